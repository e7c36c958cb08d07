from flask import Blueprint, g

from app.festgate.constants import GATE_VIEWER
from app.festgate.credentials import load_festival
from app.festgate.db import db_session
from app.festgate.guards import require_gate

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {"service": "festgate", "ok": True}


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/f/<code>/")
@require_gate(GATE_VIEWER)
def festival_home(code: str):
    s = db_session()
    festival = load_festival(s, code)
    outcome = g.gate_outcome
    return {
        "festival": festival.public_info(),
        "access_method": outcome.access_method,
        "visitor_name": outcome.visitor_name,
    }
