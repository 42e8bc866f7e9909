"""Order lifecycle and real-time tracking service."""
