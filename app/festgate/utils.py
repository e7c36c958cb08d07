from __future__ import annotations

import re
import secrets
import uuid
from datetime import datetime, timezone

from app.festgate.constants import FESTIVAL_CODE_LENGTH

_WHITESPACE_RE = re.compile(r"\s+")
_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_visitor_name(raw: str | None) -> str:
    """
    Storage form of a visitor name: trimmed, lower-cased, internal whitespace
    collapsed to a single hyphen. " Alice  Smith " -> "alice-smith".
    """
    name = (raw or "").strip().lower()
    return _WHITESPACE_RE.sub("-", name)


def new_session_id() -> str:
    return uuid.uuid4().hex


def generate_festival_code() -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(FESTIVAL_CODE_LENGTH))


def version_token(rotated_at: datetime | None, fallback: datetime | None = None) -> str | None:
    """Serialized form of a credential version; legacy rows fall back to the tenant's updated_at."""
    ts = rotated_at or fallback
    return ts.isoformat() if ts else None
