"""listent — watch running processes for entitlements worth knowing about."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("listent")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
