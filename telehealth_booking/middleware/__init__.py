"""Request-level middleware: caller identity."""
