"""Background monitoring: daemon launch handshake and worker runtime."""
