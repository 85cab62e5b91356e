"""Welcome Bot - Microsoft Teams membership-change dispatcher."""

__version__ = "1.0.0"
