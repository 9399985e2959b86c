"""Package version stamped on every JSON log record."""

__version__ = "0.1.0"
