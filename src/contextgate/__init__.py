"""contextgate: scoped, consented access for CLI and integration clients."""

__version__ = "0.4.0"
