"""Scheduled product refresh service for the Amazon affiliate storefront."""

__version__ = "1.0.0"
