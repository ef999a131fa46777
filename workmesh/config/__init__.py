"""
Configuration module for workmesh.
"""
from .settings import Settings

__all__ = [
    'Settings',
]
