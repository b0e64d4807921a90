"""Hosts file parsing, RouterOS static DNS script generation and the HTTP server that serves the scripts."""

__version__ = "4.0.0"