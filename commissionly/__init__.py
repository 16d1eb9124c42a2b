"""Commissionly: sales commission engine service."""

__version__ = "1.0.0"
