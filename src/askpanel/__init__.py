"""askpanel - ask several answer providers by voice or text."""

__version__ = "0.1.0"
