"""
Authentication helpers for the Profile service.
"""

from .oauth import OAuthAuthenticator

__all__ = [
    "OAuthAuthenticator",
]
