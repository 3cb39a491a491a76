"""Offer search -- denormalized offer view sync and role-filtered search."""

__version__ = "1.0.0"
