"""rdpanel - resilient client and dashboard backend for a server hosting API."""

__version__ = "0.1.0"
