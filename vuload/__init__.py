"""Staged virtual-user load generation for HTTP endpoints."""

__version__ = "0.1.0"
