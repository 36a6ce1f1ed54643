"""
Command line interface
"""
from .app import app, run

__all__ = ["app", "run"]
