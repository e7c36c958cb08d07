import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    credential_verifier: str
    credential_timeout_seconds: float
    session_lifetime_days: int

    analytics_page_size: int
    top_visitors_limit: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    try:
        value = int(raw) if raw else default
    except ValueError:
        return default
    return value if value > 0 else default


def _getfloat(name: str, default: float) -> float:
    raw = _getenv(name)
    try:
        value = float(raw) if raw else default
    except ValueError:
        return default
    return value if value > 0 else default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///festgate.db"),
        credential_verifier=_getenv("CREDENTIAL_VERIFIER", "local").lower(),
        credential_timeout_seconds=_getfloat("CREDENTIAL_TIMEOUT_SECONDS", 5.0),
        session_lifetime_days=_getint("SESSION_LIFETIME_DAYS", 30),
        analytics_page_size=_getint("ANALYTICS_PAGE_SIZE", 25),
        top_visitors_limit=_getint("TOP_VISITORS_LIMIT", 10),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "CREDENTIAL_VERIFIER": s.credential_verifier,
        "CREDENTIAL_TIMEOUT_SECONDS": s.credential_timeout_seconds,
        "SESSION_LIFETIME_DAYS": s.session_lifetime_days,
        "ANALYTICS_PAGE_SIZE": s.analytics_page_size,
        "TOP_VISITORS_LIMIT": s.top_visitors_limit,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
