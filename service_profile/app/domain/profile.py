"""
Profile composition: merges a batch outcome into the response document and
derives its cache validators (ETag, Last-Modified).
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Dict, Mapping, Optional

from service_profile.app.batching.engine import BatchOutcome
from service_profile.app.domain.models import Credentials
from service_profile.app.domain.scopes import has_openid_scope


@dataclass(frozen=True)
class ComposedProfile:
    """Profile body plus the validators emitted with it."""

    profile: Dict[str, Any]
    etag: Optional[str]
    last_modified: datetime

    @property
    def last_modified_header(self) -> str:
        return format_http_date(self.last_modified)


def has_profile_data(profile: Optional[Mapping[str, Any]]) -> bool:
    """True when at least one profile field carries a non-null value."""
    if profile is None:
        return False
    return any(value is not None for value in profile.values())


def serialize_profile(profile: Mapping[str, Any]) -> str:
    """Canonical JSON form of a profile: sorted keys, no whitespace."""
    return json.dumps(profile, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_etag(profile: Optional[Mapping[str, Any]], *, allow_empty: bool = False) -> Optional[str]:
    """Content hash of the profile, or None when there is nothing to validate.

    A missing or empty profile never gets an ETag. A profile whose fields
    are all null only gets one when ``allow_empty`` is set.
    """
    if not profile:
        return None
    if not allow_empty and not has_profile_data(profile):
        return None
    return hashlib.sha1(serialize_profile(profile).encode("utf-8")).hexdigest()


def format_http_date(value: datetime) -> str:
    """Format a datetime as an RFC 1123 HTTP-date (always GMT)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def compose_profile(
    outcome: BatchOutcome,
    credentials: Credentials,
    *,
    now: Optional[datetime] = None,
    etag_empty_profile: bool = False,
) -> ComposedProfile:
    """Build the response profile from a successful batch outcome."""
    profile: Dict[str, Any] = dict(outcome.value or {})

    if has_openid_scope(credentials.scope):
        profile["sub"] = credentials.user

    etag = compute_etag(profile, allow_empty=etag_empty_profile)

    if outcome.from_cache and outcome.stored_at is not None:
        last_modified = outcome.stored_at
    else:
        last_modified = now or datetime.now(timezone.utc)

    return ComposedProfile(profile=profile, etag=etag, last_modified=last_modified)
