"""
Scope checks gating profile disclosure.
"""

from typing import Iterable, Optional

PROFILE_SCOPE = "profile"
EMAIL_SCOPE = "email"
OPENID_SCOPE = "openid"
# Fine-grained profile scopes, e.g. "profile:email". The colon is part of
# the prefix so that a scope such as "profilebogie" is never matched.
PROFILE_SCOPE_PREFIX = "profile:"


def has_allowed_scope(scopes: Optional[Iterable[str]]) -> bool:
    """Return True if any granted scope permits reading the profile."""
    for scope in scopes or ():
        if scope in (PROFILE_SCOPE, EMAIL_SCOPE) or scope.startswith(PROFILE_SCOPE_PREFIX):
            return True
    return False


def has_openid_scope(scopes: Optional[Iterable[str]]) -> bool:
    """Return True if the caller was granted the OpenID Connect scope."""
    return OPENID_SCOPE in (scopes or ())
