"""Warden: hierarchical role-based access control engine."""

__version__ = "1.0.0"
