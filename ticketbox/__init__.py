"""Discord support tickets with an audited lifecycle."""

__version__ = "0.1.0"
