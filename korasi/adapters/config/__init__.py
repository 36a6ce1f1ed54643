"""
Configuration adapters
"""
from .loader import ConfigLoader
from .settings import Settings

__all__ = ["ConfigLoader", "Settings"]
