"""Lot allocation and picking fulfillment service."""

__version__ = "0.1.0"
