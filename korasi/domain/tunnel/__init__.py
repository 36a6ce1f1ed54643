"""
Tunnel domain module
"""
from .forwarder import TunnelForwarder, parse_remote_address

__all__ = ["TunnelForwarder", "parse_remote_address"]
