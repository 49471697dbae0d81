"""Asynchronous generative-content task service."""

__version__ = "0.1.0"
