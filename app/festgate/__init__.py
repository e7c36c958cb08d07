import logging
from datetime import timedelta

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from app.festgate.access_log import AccessLogger
from app.festgate.config import load_config
from app.festgate.credentials import CredentialStore, verifier_from_config
from app.festgate.db import init_db, teardown_db_session
from app.festgate.errors import GateBusy, TenantNotFound
from app.festgate.routes import bp as routes_bp
from app.festgate.auth import bp as auth_bp, assign_request_id
from app.festgate.admin import bp as admin_bp
from app.festgate.utils import utcnow


def init_services(app: Flask) -> None:
    """Register the credential store, verifier and access logger on app.extensions."""
    sm = app.extensions["sqlalchemy_sessionmaker"]
    app.extensions.setdefault("festgate_clock", utcnow)

    def clock():
        return app.extensions["festgate_clock"]()

    store = CredentialStore(sm=sm, timeout_seconds=float(app.config["CREDENTIAL_TIMEOUT_SECONDS"]))
    app.extensions["festgate_store"] = store
    app.extensions["festgate_verifier"] = verifier_from_config(app.config, store)
    app.extensions["festgate_access_logger"] = AccessLogger(sm=sm, clock=clock)
    # None -> signed cookie session store per request
    app.extensions.setdefault("festgate_session_store", None)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=app.config["SESSION_LIFETIME_DAYS"])
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    from app.festgate.security import validate_csrf

    @app.before_request
    def _request_setup():
        assign_request_id()
        if request.path.startswith(("/health", "/healthz")):
            return None
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Gate submits are the login step and carry no token yet.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return jsonify({"error": "CSRF token missing or invalid."}), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if app.config.get("CREDENTIAL_VERIFIER") == "local":
            app.logger.warning("CREDENTIAL_VERIFIER=local: festival secrets are compared outside the database.")

    init_db(app)
    init_services(app)

    def _dispose_engine_on_fork() -> None:
        import os
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)

    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(TenantNotFound)
    def _err_tenant_not_found(e):  # type: ignore[no-redef]
        app.logger.info("Festival not found: %s (request_id=%s)", e.code, getattr(g, "request_id", None))
        return jsonify({"error": "festival not found"}), 404

    @app.errorhandler(GateBusy)
    def _err_gate_busy(e):  # type: ignore[no-redef]
        return jsonify({"error": "verification already in progress"}), 409

    @app.errorhandler(HTTPException)
    def _err_http(e):  # type: ignore[no-redef]
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return jsonify({"error": "internal server error", "request_id": rid}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
