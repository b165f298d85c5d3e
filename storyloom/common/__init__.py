"""
Common utilities shared across storyloom modules.
"""

from .config import Settings

__all__ = ["Settings"]
