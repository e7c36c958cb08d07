from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.festgate.analytics import LogFilter, build_report
from app.festgate.audit import record_event
from app.festgate.constants import GATE_ADMIN, GATE_KINDS, SORTABLE_COLUMNS
from app.festgate.credentials import load_festival
from app.festgate.db import db_session
from app.festgate.errors import VerificationFailed
from app.festgate.guards import require_gate
from app.festgate.security import ensure_csrf_token

bp = Blueprint("admin", __name__)


def _payload() -> dict:
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def _parse_bool(value) -> bool | None:
    if isinstance(value, bool):
        return value
    v = str(value or "").strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return None


# ---------- Overview ----------
@bp.get("/f/<code>/admin/")
@require_gate(GATE_ADMIN)
def admin_index(code: str):
    s = db_session()
    festival = load_festival(s, code)
    return {
        "festival": festival.public_info(),
        "requires_password": festival.requires_password,
        "viewer_password_set": bool(festival.viewer_secret),
        "viewer_password_updated_at": (
            festival.viewer_secret_rotated_at.isoformat() if festival.viewer_secret_rotated_at else None
        ),
        "admin_password_updated_at": (
            festival.admin_secret_rotated_at.isoformat() if festival.admin_secret_rotated_at else None
        ),
        "stats": festival.stats.to_dict() if festival.stats else None,
        "csrf_token": ensure_csrf_token(),
    }


# ---------- Credentials ----------
@bp.post("/f/<code>/admin/credentials/<kind>")
@require_gate(GATE_ADMIN, elevated=True)
def rotate_credential(code: str, kind: str):
    if kind not in GATE_KINDS:
        return jsonify({"error": f"unknown credential kind: {kind}"}), 404
    data = _payload()
    store = current_app.extensions["festgate_store"]
    clock = current_app.extensions["festgate_clock"]
    try:
        token = store.rotate_credential(code, kind, str(data.get("password") or ""), now=clock())
    except VerificationFailed as e:
        return jsonify({"error": str(e)}), 400

    s = db_session()
    festival = load_festival(s, code)
    record_event(
        s,
        festival_id=festival.id,
        actor_kind=GATE_ADMIN,
        action="credential.rotate",
        entity_type="Festival",
        entity_id=str(festival.id),
        metadata={"kind": kind, "rotated_at": token},
    )
    s.commit()
    current_app.logger.info("Credential rotated festival=%s kind=%s", code, kind)
    return {"ok": True, "kind": kind, "rotated_at": token, "sessions_invalidated": True}


# ---------- Settings ----------
@bp.post("/f/<code>/admin/settings")
@require_gate(GATE_ADMIN, elevated=True)
def update_settings(code: str):
    required = _parse_bool(_payload().get("requires_password"))
    if required is None:
        return jsonify({"error": "requires_password must be true or false"}), 400
    store = current_app.extensions["festgate_store"]
    clock = current_app.extensions["festgate_clock"]
    try:
        store.set_requires_password(code, required, now=clock())
    except VerificationFailed as e:
        return jsonify({"error": str(e)}), 400

    s = db_session()
    festival = load_festival(s, code)
    record_event(
        s,
        festival_id=festival.id,
        actor_kind=GATE_ADMIN,
        action="festival.settings",
        entity_type="Festival",
        entity_id=str(festival.id),
        metadata={"requires_password": required},
    )
    s.commit()
    body = {"ok": True, "requires_password": required}
    if not required:
        body["notice"] = "Visitors will enter without a password and their visits will not be logged."
    return body


# ---------- Analytics ----------
@bp.get("/f/<code>/admin/analytics")
@require_gate(GATE_ADMIN)
def analytics(code: str):
    s = db_session()
    festival = load_festival(s, code)

    sort_column = (request.args.get("sort") or "accessed_at").strip()
    if sort_column not in SORTABLE_COLUMNS:
        sort_column = "accessed_at"
    sort_direction = "asc" if (request.args.get("dir") or "").strip().lower() == "asc" else "desc"
    try:
        page = int(request.args.get("page") or 1)
    except ValueError:
        page = 1

    report = build_report(
        s,
        festival,
        LogFilter.from_args(request.args),
        now=current_app.extensions["festgate_clock"](),
        sort_column=sort_column,
        sort_direction=sort_direction,
        page=page,
        page_size=int(current_app.config.get("ANALYTICS_PAGE_SIZE") or 25),
        top_n=int(current_app.config.get("TOP_VISITORS_LIMIT") or 10),
    )
    return report
