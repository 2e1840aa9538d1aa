"""Common utilities for warden."""

from .logger import setup_logger, get_logger

__all__ = ["get_logger", "setup_logger"]
