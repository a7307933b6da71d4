"""
Route handlers for the Profile Service.
"""

from .profile import ProfileHandler

__all__ = [
    "ProfileHandler",
]
