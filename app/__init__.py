"""Voice-agent admin back-office: security core."""

__version__ = "0.1.0"
