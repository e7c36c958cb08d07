"""
Client-held session records and the cache that validates them.

A SessionRecord proves that this client knew the current secret of one gate
of one festival on one calendar day. It is valid only while its date equals
today and its token equals the credential's current rotation timestamp, so a
rotation or a day rollover invalidates it without any server-side state.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any

from app.festgate.constants import GATE_KINDS
from app.festgate.errors import SessionCacheCorrupt

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
_ALLOWED_KEYS = frozenset({"v", "authenticated", "date", "token", "visitor_name", "session_id"})


@dataclass(frozen=True)
class SessionRecord:
    authenticated: bool
    valid_for_date: date
    version_token: str
    visitor_name: str | None = None
    session_id: str | None = None

    def to_json(self) -> str:
        payload: dict[str, Any] = {
            "v": SCHEMA_VERSION,
            "authenticated": self.authenticated,
            "date": self.valid_for_date.isoformat(),
            "token": self.version_token,
        }
        if self.visitor_name is not None:
            payload["visitor_name"] = self.visitor_name
        if self.session_id is not None:
            payload["session_id"] = self.session_id
        return json.dumps(payload, sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "SessionRecord":
        """Strict parse; anything that is not exactly a v1 record raises SessionCacheCorrupt."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise SessionCacheCorrupt("Session record is not valid JSON") from e
        if not isinstance(data, dict):
            raise SessionCacheCorrupt("Session record must be a JSON object")
        if data.get("v") != SCHEMA_VERSION:
            raise SessionCacheCorrupt(f"Unsupported session record version: {data.get('v')!r}")
        extra = set(data) - _ALLOWED_KEYS
        if extra:
            raise SessionCacheCorrupt(f"Unexpected session record keys: {sorted(extra)}")

        authenticated = data.get("authenticated")
        token = data.get("token")
        raw_date = data.get("date")
        if not isinstance(authenticated, bool):
            raise SessionCacheCorrupt("authenticated must be a boolean")
        if not isinstance(token, str) or not token:
            raise SessionCacheCorrupt("token must be a non-empty string")
        if not isinstance(raw_date, str):
            raise SessionCacheCorrupt("date must be a string")
        try:
            valid_for = date.fromisoformat(raw_date)
        except ValueError as e:
            raise SessionCacheCorrupt("date must be YYYY-MM-DD") from e

        optional: dict[str, str | None] = {}
        for key in ("visitor_name", "session_id"):
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise SessionCacheCorrupt(f"{key} must be a string")
            optional[key] = value

        return cls(
            authenticated=authenticated,
            valid_for_date=valid_for,
            version_token=token,
            visitor_name=optional["visitor_name"],
            session_id=optional["session_id"],
        )


def is_valid(record: SessionRecord | None, current_token: str | None, today: date) -> bool:
    if record is None or not record.authenticated or current_token is None:
        return False
    return record.valid_for_date == today and record.version_token == current_token


class SessionStore:
    """Key-value storage for serialized records. Keys are already namespaced."""

    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class CookieSessionStore(SessionStore):
    """
    Backed by Flask's signed session cookie, so the record lives on the client
    and survives browser restarts (the session is marked permanent).
    """

    def get(self, key: str) -> str | None:
        from flask import session

        value = session.get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        from flask import session

        session.permanent = True
        session[key] = value

    def delete(self, key: str) -> None:
        from flask import session

        session.pop(key, None)


def cache_key(code: str, kind: str) -> str:
    return f"festgate:{kind}:{code}"


class SessionCache:
    def __init__(self, store: SessionStore):
        self.backend = store

    def load(self, code: str, kind: str) -> SessionRecord | None:
        """Read the stored record; malformed records are discarded and reported as absent."""
        if kind not in GATE_KINDS:
            raise ValueError(f"Unknown gate kind: {kind!r}")
        key = cache_key(code, kind)
        raw = self.backend.get(key)
        if raw is None:
            return None
        try:
            return SessionRecord.from_json(raw)
        except SessionCacheCorrupt as e:
            logger.warning("Discarding corrupt %s session record for %s: %s", kind, code, e)
            self.backend.delete(key)
            return None

    def store(self, code: str, kind: str, record: SessionRecord) -> None:
        self.backend.set(cache_key(code, kind), record.to_json())

    def clear(self, code: str, kind: str) -> None:
        self.backend.delete(cache_key(code, kind))
