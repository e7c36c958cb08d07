"""
Credential Store and verifiers.

The store owns the festivals table: per-festival viewer/admin secrets, their
rotation timestamps and the requires_password flag. Every call runs in its own
short transaction on a worker thread so it can be bounded by a timeout; a
timeout or driver error surfaces as CredentialStoreUnavailable.

Two verifiers sit on top of the store:

* LocalCredentialVerifier fetches the true secret and compares it in the
  gate. This is the historical behaviour: the secret leaves the database.
* ServerSideCredentialVerifier asks the database whether the attempt matches,
  so only a yes/no and the version token come back.
"""
from __future__ import annotations

import hmac
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.festgate.constants import GATE_ADMIN, GATE_KINDS
from app.festgate.db import transaction
from app.festgate.errors import CredentialStoreUnavailable, TenantNotFound, VerificationFailed
from app.festgate.models import Festival, VisitorStats
from app.festgate.utils import generate_festival_code, utcnow, version_token

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Shared by every store instance; calls are short and bounded.
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="credential-store")


@dataclass(frozen=True)
class TenantInfo:
    id: int
    code: str
    requires_password: bool
    viewer_token: str | None
    admin_token: str | None
    info: dict

    def token_for(self, kind: str) -> str | None:
        return self.admin_token if kind == GATE_ADMIN else self.viewer_token


@dataclass(frozen=True)
class Credential:
    tenant_id: int
    secret: str | None
    rotated_at: str | None  # version token
    requires_password: bool


@dataclass(frozen=True)
class Verification:
    ok: bool
    tenant_id: int
    version_token: str | None
    requires_password: bool


def _check_kind(kind: str) -> None:
    if kind not in GATE_KINDS:
        raise ValueError(f"Unknown gate kind: {kind!r}")


def _secret_columns(kind: str):
    _check_kind(kind)
    if kind == GATE_ADMIN:
        return Festival.admin_secret, Festival.admin_secret_rotated_at
    return Festival.viewer_secret, Festival.viewer_secret_rotated_at


def load_festival(s: Session, code: str) -> Festival:
    f = s.execute(select(Festival).where(Festival.code == code)).scalar_one_or_none()
    if f is None:
        raise TenantNotFound(code)
    return f


def _tenant_info(f: Festival) -> TenantInfo:
    return TenantInfo(
        id=f.id,
        code=f.code,
        requires_password=bool(f.requires_password),
        viewer_token=version_token(f.viewer_secret_rotated_at, f.updated_at),
        admin_token=version_token(f.admin_secret_rotated_at, f.updated_at),
        info=f.public_info(),
    )


@dataclass(frozen=True)
class CredentialStore:
    sm: sessionmaker
    timeout_seconds: float = 5.0

    def _call(self, fn: Callable[[Session], T]) -> T:
        def run() -> T:
            with transaction(self.sm) as s:
                return fn(s)

        future = _executor.submit(run)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeout as e:
            future.cancel()
            raise CredentialStoreUnavailable(f"Credential store timed out after {self.timeout_seconds}s") from e
        except SQLAlchemyError as e:
            raise CredentialStoreUnavailable(f"Credential store error: {e.__class__.__name__}") from e

    def get_tenant(self, code: str) -> TenantInfo:
        return self._call(lambda s: _tenant_info(load_festival(s, code)))

    def get_credential(self, code: str, kind: str) -> Credential:
        _check_kind(kind)

        def fetch(s: Session) -> Credential:
            f = load_festival(s, code)
            info = _tenant_info(f)
            secret = f.admin_secret if kind == GATE_ADMIN else f.viewer_secret
            return Credential(
                tenant_id=f.id,
                secret=secret,
                rotated_at=info.token_for(kind),
                requires_password=info.requires_password,
            )

        return self._call(fetch)

    def check_secret(self, code: str, kind: str, attempt: str) -> Verification:
        """Comparison happens in the database; the stored secret is never selected."""
        secret_col, _ = _secret_columns(kind)

        def check(s: Session) -> Verification:
            f = load_festival(s, code)
            info = _tenant_info(f)
            matched = s.execute(
                select(Festival.id).where(Festival.id == f.id, secret_col.is_not(None), secret_col == attempt)
            ).scalar_one_or_none()
            return Verification(
                ok=matched is not None,
                tenant_id=f.id,
                version_token=info.token_for(kind),
                requires_password=info.requires_password,
            )

        return self._call(check)

    def rotate_credential(self, code: str, kind: str, new_secret: str, *, now: datetime | None = None) -> str:
        """Set a new secret and bump its rotation timestamp. Returns the new version token."""
        _check_kind(kind)
        new_secret = (new_secret or "").strip()
        if not new_secret:
            raise VerificationFailed("New password must not be empty.")
        ts = now or utcnow()

        def rotate(s: Session) -> str:
            f = load_festival(s, code)
            if kind == GATE_ADMIN:
                f.admin_secret = new_secret
                f.admin_secret_rotated_at = ts
            else:
                f.viewer_secret = new_secret
                f.viewer_secret_rotated_at = ts
            f.updated_at = ts
            return ts.isoformat()

        token = self._call(rotate)
        logger.info("Rotated %s credential for festival %s", kind, code)
        return token

    def set_requires_password(self, code: str, required: bool, *, now: datetime | None = None) -> None:
        ts = now or utcnow()

        def update(s: Session) -> None:
            f = load_festival(s, code)
            if required and not (f.viewer_secret and f.admin_secret):
                raise VerificationFailed("Both viewer and admin passwords must be set before requiring a password.")
            f.requires_password = required
            f.updated_at = ts

        self._call(update)


class CredentialVerifier:
    def verify(self, code: str, kind: str, attempt: str) -> Verification:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalCredentialVerifier(CredentialVerifier):
    """Fetches the stored secret and compares here (exact, case-sensitive)."""

    store: CredentialStore

    def verify(self, code: str, kind: str, attempt: str) -> Verification:
        cred = self.store.get_credential(code, kind)
        ok = cred.secret is not None and hmac.compare_digest(cred.secret.encode("utf-8"), attempt.encode("utf-8"))
        return Verification(
            ok=ok,
            tenant_id=cred.tenant_id,
            version_token=cred.rotated_at,
            requires_password=cred.requires_password,
        )


@dataclass(frozen=True)
class ServerSideCredentialVerifier(CredentialVerifier):
    store: CredentialStore

    def verify(self, code: str, kind: str, attempt: str) -> Verification:
        return self.store.check_secret(code, kind, attempt)


def verifier_from_config(config: dict, store: CredentialStore) -> CredentialVerifier:
    mode = (config.get("CREDENTIAL_VERIFIER") or "local").strip().lower()
    if mode == "server":
        return ServerSideCredentialVerifier(store=store)
    if mode != "local":
        logger.warning("Unknown CREDENTIAL_VERIFIER=%r; using local comparison", mode)
    return LocalCredentialVerifier(store=store)


def create_festival(
    s: Session,
    *,
    event_name: str,
    viewer_secret: str | None = None,
    admin_secret: str | None = None,
    requires_password: bool = True,
    code: str | None = None,
    organiser: str | None = None,
    location: str | None = None,
    event_start_date: date | None = None,
    event_end_date: date | None = None,
    now: datetime | None = None,
) -> Festival:
    """
    Create a festival with its (empty) visitor stats row. Used by seeding and tests;
    festival creation proper is handled outside this service.
    """
    if requires_password and not (viewer_secret and admin_secret):
        raise ValueError("A password-protected festival needs both viewer and admin secrets.")
    ts = now or utcnow()
    code = (code or "").strip().upper()
    if not code:
        for _ in range(10):
            candidate = generate_festival_code()
            if s.execute(select(Festival.id).where(Festival.code == candidate)).first() is None:
                code = candidate
                break
        else:
            raise RuntimeError("Could not generate a unique festival code.")
    f = Festival(
        code=code,
        event_name=event_name.strip(),
        organiser=organiser,
        location=location,
        event_start_date=event_start_date,
        event_end_date=event_end_date,
        requires_password=requires_password,
        viewer_secret=viewer_secret,
        viewer_secret_rotated_at=ts if viewer_secret else None,
        admin_secret=admin_secret,
        admin_secret_rotated_at=ts if admin_secret else None,
        created_at=ts,
        updated_at=ts,
    )
    f.stats = VisitorStats(unique_visitors=0, total_visits=0, updated_at=ts)
    s.add(f)
    s.flush()
    return f

