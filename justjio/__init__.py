"""JustJio realtime messaging: streaming client core and room chat service."""

__version__ = "0.1.0"
