import sys
from pathlib import Path
import os

from sqlalchemy import select

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.festgate.credentials import create_festival
from app.festgate.db import build_sessionmaker, transaction
from app.festgate.models import Base, Festival


def seed_only(*, database_url: str | None = None, create_tables: bool = False) -> None:
    """
    Seed a demo festival in an idempotent way.
    Does NOT overwrite an existing festival's passwords.
    """
    code = (os.environ.get("DEMO_FESTIVAL_CODE") or "").strip().upper()
    if not code:
        print("DEMO_FESTIVAL_CODE not set; nothing to seed.")
        return
    viewer_secret = os.environ.get("DEMO_VIEWER_PASSWORD") or "change-me"
    admin_secret = os.environ.get("DEMO_ADMIN_PASSWORD") or "change-me-too"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///festgate.db").strip()
    sm = build_sessionmaker(db_url)
    if create_tables:
        Base.metadata.create_all(bind=sm.kw["bind"])

    with transaction(sm) as s:
        existing = s.execute(select(Festival).where(Festival.code == code)).scalar_one_or_none()
        if existing:
            print(f"Festival {code} already exists; leaving it unchanged.")
            return
        create_festival(
            s,
            code=code,
            event_name=os.environ.get("DEMO_FESTIVAL_NAME") or "Demo Festival",
            viewer_secret=viewer_secret,
            admin_secret=admin_secret,
        )

    print(f"Initialized database (seed_only). Festival code: {code}")
    print("Passwords: (from DEMO_VIEWER_PASSWORD / DEMO_ADMIN_PASSWORD)")


def main() -> None:
    # Local development convenience: create tables without running migrations.
    seed_only(database_url=None, create_tables="--create-tables" in sys.argv)


if __name__ == "__main__":
    main()
