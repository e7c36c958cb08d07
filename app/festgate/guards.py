from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g, jsonify, request

from app.festgate.constants import GATE_ADMIN, GATE_VIEWER
from app.festgate.gate import AdminGate, AuthGate, ViewerGate
from app.festgate.sessions import CookieSessionStore, SessionCache


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def build_gate(kind: str, code: str, *, elevated: bool = False) -> AuthGate:
    """Wire a gate for this request from the services registered on the app."""
    ext = current_app.extensions
    session_store = ext.get("festgate_session_store") or CookieSessionStore()
    common = {
        "store": ext["festgate_store"],
        "verifier": ext["festgate_verifier"],
        "cache": SessionCache(session_store),
        "clock": ext["festgate_clock"],
    }
    if kind == GATE_ADMIN:
        return AdminGate(normalize_code(code), elevated=elevated, **common)
    if kind == GATE_VIEWER:
        return ViewerGate(
            normalize_code(code),
            access_logger=ext["festgate_access_logger"],
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
            **common,
        )
    raise ValueError(f"Unknown gate kind: {kind!r}")


def require_gate(kind: str, *, elevated: bool = False) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(code: str, *args: Any, **kwargs: Any):
            gate = build_gate(kind, code, elevated=elevated)
            try:
                outcome = gate.load()
            finally:
                gate.close()
            # Not proven -> 401 with the gate state so the client can show the challenge.
            if not outcome.authenticated:
                body = outcome.to_dict()
                body["error"] = "authentication required"
                return jsonify(body), 401
            g.gate_outcome = outcome
            return fn(gate.code, *args, **kwargs)

        return wrapped

    return decorator
