"""FindItNow: lost-and-found service."""

__version__ = "0.1.0"
