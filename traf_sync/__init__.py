"""Create a single Google Calendar event using a locally stored OAuth grant."""

__version__ = "0.1.0"
