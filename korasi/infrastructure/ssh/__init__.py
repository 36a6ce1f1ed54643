"""
SSH transport
"""
from .connection import ParamikoConnection, ParamikoConnector, load_private_key

__all__ = ["ParamikoConnection", "ParamikoConnector", "load_private_key"]
