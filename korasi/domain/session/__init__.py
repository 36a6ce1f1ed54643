"""
Session domain module
"""
from .models import SessionState, ChannelKind, Credentials
from .transport import TransportSession

__all__ = ["SessionState", "ChannelKind", "Credentials", "TransportSession"]
