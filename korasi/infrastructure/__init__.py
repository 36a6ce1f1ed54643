"""
Infrastructure layer: concrete collaborators for the domain interfaces
"""
