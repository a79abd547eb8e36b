"""Social preview card renderer."""

__version__ = "0.1.0"
