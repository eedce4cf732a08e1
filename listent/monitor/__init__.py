"""Process monitoring: matching, tracking and the polling loop."""
