"""Bakehouse: live client for the bakery batch-scheduling simulator."""

__version__ = "0.1.0"
__author__ = "Bakehouse Team"

__all__ = ["__version__", "__author__"]
