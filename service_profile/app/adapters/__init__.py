"""
Adapters package for the Profile Service.

HTTP client wrappers for upstream dependencies (OAuth server, identity
services). Adapters own base URLs, request shapes, circuit breakers and
the mapping of transport failures onto shared errors.
"""

from .identity_client import IdentityClient
from .oauth_client import OAuthClient

__all__ = [
    "IdentityClient",
    "OAuthClient",
]
