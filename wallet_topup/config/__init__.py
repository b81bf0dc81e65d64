"""Configuration package for the wallet top-up service."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
