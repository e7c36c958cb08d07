"""
festgate deploy entry point.

    python scripts/release.py          # migrate the festivals schema, seed the demo festival
    python scripts/release.py serve    # the same, then exec gunicorn on $PORT

The seed step only runs when DEMO_FESTIVAL_CODE is set and never touches an
existing festival's passwords.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is required for a release; festgate will not fall back to a local sqlite file.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Credential store must be Postgres in production; got a sqlite DATABASE_URL.")
    return db_url


def run_release() -> None:
    db_url = _database_url()

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    print("Upgrading festgate schema to head...", flush=True)
    command.upgrade(cfg, "head")

    from scripts import init_db

    init_db.seed_only(database_url=db_url)


def _port() -> str:
    port = (os.environ.get("PORT") or "8080").strip()
    if not port.isdigit() or not 1 <= int(port) <= 65535:
        raise SystemExit(f"PORT must be an integer between 1 and 65535, got {port!r}")
    return port


def serve() -> None:
    port = _port()
    run_release()
    workers = (os.environ.get("WEB_CONCURRENCY") or "2").strip()
    # Gate submits wait on the credential store, so allow a little more than its timeout.
    timeout = str(int(float(os.environ.get("CREDENTIAL_TIMEOUT_SECONDS") or 5)) + 55)
    print(f"Serving festgate on 0.0.0.0:{port} ({workers} workers)", flush=True)
    os.execvp(
        "gunicorn",
        [
            "gunicorn",
            "app.wsgi:app",
            "--bind", f"0.0.0.0:{port}",
            "--workers", workers,
            "--timeout", timeout,
            "--preload",
            "--access-logfile", "-",
            "--error-logfile", "-",
        ],
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Migrate festgate and optionally start the web server.")
    parser.add_argument("command", nargs="?", choices=("release", "serve"), default="release")
    args = parser.parse_args()
    try:
        if args.command == "serve":
            serve()
        else:
            run_release()
    except RuntimeError as e:
        print(f"festgate release failed: {e}", flush=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
