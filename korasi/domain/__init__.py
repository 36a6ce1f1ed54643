"""
Domain layer: path mapping, sync, sessions, execution, tunnels and the
instance lifecycle
"""
