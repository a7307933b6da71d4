"""
Data models for the profile service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict


# Logical profile field -> identity service locator. Order is preserved in
# the aggregated profile.
PROFILE_RESOURCES: Mapping[str, str] = {
    "email": "/v1/email",
    "uid": "/v1/uid",
    "avatar": "/v1/avatar",
    "displayName": "/v1/display_name",
}


def normalize_scope(scope: Union[None, str, Iterable[str]]) -> Tuple[str, ...]:
    """Normalize a scope claim (list or space-delimited string) to a tuple."""
    if scope is None:
        return ()
    if isinstance(scope, str):
        return tuple(scope.split())
    return tuple(item for item in scope if isinstance(item, str))


@dataclass(frozen=True)
class Credentials:
    """Authenticated caller produced by the OAuth strategy."""

    user: str
    scope: Tuple[str, ...] = ()
    client_id: Optional[str] = None

    @classmethod
    def from_verify_response(cls, payload: Mapping[str, Any]) -> "Credentials":
        return cls(
            user=str(payload["user"]),
            scope=normalize_scope(payload.get("scope")),
            client_id=payload.get("client_id"),
        )


@dataclass(frozen=True)
class BatchRequest:
    """Per-request input handed to the aggregation engine."""

    credentials: Credentials
    token: str


class ProfileResponse(BaseModel):
    """Response body schema for ``GET /v1/profile``."""

    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = None
    uid: Optional[str] = None
    avatar: Optional[str] = None
    displayName: Optional[str] = None

    # openid-connect
    sub: Optional[str] = None
