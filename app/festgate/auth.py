from __future__ import annotations

import uuid

from flask import Blueprint, g, jsonify, request

from app.festgate.constants import GATE_ADMIN, GATE_VIEWER, MSG_UNAVAILABLE
from app.festgate.gate import GateOutcome
from app.festgate.guards import build_gate
from app.festgate.security import ensure_csrf_token

bp = Blueprint("auth", __name__)


def assign_request_id() -> None:
    """Per-request id for audit/log correlation."""
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex


def _payload() -> dict:
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def _respond(outcome: GateOutcome, *, include_csrf: bool = False):
    body = outcome.to_dict()
    if include_csrf and outcome.authenticated:
        body["csrf_token"] = ensure_csrf_token()
    if outcome.authenticated or outcome.message is None:
        return jsonify(body), 200
    if outcome.message == MSG_UNAVAILABLE:
        return jsonify(body), 503
    return jsonify(body), 401


@bp.get("/f/<code>/access")
def viewer_access_get(code: str):
    gate = build_gate(GATE_VIEWER, code)
    try:
        outcome = gate.load()
    finally:
        gate.close()
    return _respond(outcome)


@bp.post("/f/<code>/access")
def viewer_access_post(code: str):
    data = _payload()
    gate = build_gate(GATE_VIEWER, code)
    try:
        outcome = gate.submit(str(data.get("password") or ""), visitor_name=str(data.get("visitor_name") or ""))
    finally:
        gate.close()
    return _respond(outcome)


@bp.get("/f/<code>/admin/access")
def admin_access_get(code: str):
    url_secret = request.args.get("p")
    gate = build_gate(GATE_ADMIN, code, elevated=bool((url_secret or "").strip()))
    try:
        outcome = gate.load(url_secret=url_secret)
    finally:
        gate.close()
    return _respond(outcome, include_csrf=True)


@bp.post("/f/<code>/admin/access")
def admin_access_post(code: str):
    password = str(_payload().get("password") or "")
    # A submitted secret is always checked, so an organiser can prove themselves on an open festival.
    gate = build_gate(GATE_ADMIN, code, elevated=bool(password.strip()))
    try:
        outcome = gate.submit(password)
    finally:
        gate.close()
    return _respond(outcome, include_csrf=True)
