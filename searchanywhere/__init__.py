"""SearchAnywhere - one query over apps, settings and indexed files."""

__version__ = "0.1.0"
