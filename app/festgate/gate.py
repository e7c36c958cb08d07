"""
Viewer and admin gates.

    LOADING -> AUTHENTICATED | UNAUTHENTICATED
    UNAUTHENTICATED -> VERIFYING -> AUTHENTICATED | UNAUTHENTICATED (retry)

A gate instance lives for one page/request. Only one verify may be in flight per
instance, and a verify that completes after close() is dropped without writing
the session cache or the access log. Retries are unlimited; there is no lockout.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable

from app.festgate.access_log import AccessLogger
from app.festgate.constants import (
    ACCESS_DIRECT_LINK,
    ACCESS_PASSWORD_MODAL,
    GATE_ADMIN,
    GATE_VIEWER,
    MSG_ACCESS_GRANTED,
    MSG_NAME_REQUIRED,
    MSG_PASSWORD_REQUIRED,
    MSG_UNAVAILABLE,
    MSG_WRONG_PASSWORD,
)
from app.festgate.credentials import CredentialStore, CredentialVerifier, TenantInfo, Verification
from app.festgate.errors import CredentialStoreUnavailable, GateBusy
from app.festgate.sessions import SessionCache, SessionRecord, is_valid
from app.festgate.utils import new_session_id, normalize_visitor_name, utcnow

logger = logging.getLogger(__name__)


class GateState(str, enum.Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    VERIFYING = "verifying"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class GateOutcome:
    kind: str
    state: GateState
    requires_password: bool = True
    festival: dict | None = None
    message: str | None = None
    retry: bool = False
    stale: bool = False
    access_method: str | None = None
    visitor_name: str | None = None
    session_id: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.state is GateState.AUTHENTICATED

    def to_dict(self) -> dict:
        d = asdict(self)
        d["state"] = self.state.value
        return d


class AuthGate:
    kind: str = ""

    def __init__(
        self,
        code: str,
        *,
        store: CredentialStore,
        verifier: CredentialVerifier,
        cache: SessionCache,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.code = code
        self.store = store
        self.verifier = verifier
        self.cache = cache
        self.clock = clock
        self._state = GateState.LOADING
        self._tenant: TenantInfo | None = None
        self._closed = False
        self._last: GateOutcome | None = None

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def tenant(self) -> TenantInfo | None:
        return self._tenant

    def close(self) -> None:
        """Tear down; any verify still in flight resolves as a no-op."""
        self._closed = True

    def _outcome(self, state: GateState, **kwargs) -> GateOutcome:
        self._state = state
        t = self._tenant
        kwargs.setdefault("requires_password", t.requires_password if t else True)
        kwargs.setdefault("festival", t.info if t else None)
        out = GateOutcome(kind=self.kind, state=state, **kwargs)
        self._last = out
        return out

    def _proof_required(self) -> bool:
        """True when the no-password bypass must not apply to this gate."""
        return False

    def _stale(self) -> GateOutcome:
        logger.debug("Dropping stale %s gate resolution for %s", self.kind, self.code)
        return GateOutcome(kind=self.kind, state=self._state, stale=True)

    def load(self) -> GateOutcome:
        """
        Entry step. TenantNotFound propagates (the page cannot render); an
        unreachable store leaves the gate unauthenticated.
        """
        self._state = GateState.LOADING
        try:
            tenant = self.store.get_tenant(self.code)
        except CredentialStoreUnavailable as e:
            logger.warning("%s gate load failed closed for %s: %s", self.kind, self.code, e)
            return self._outcome(GateState.UNAUTHENTICATED, message=MSG_UNAVAILABLE, retry=True)
        if self._closed:
            return self._stale()
        self._tenant = tenant

        if not tenant.requires_password and not self._proof_required():
            # No session record and no access log for open festivals.
            return self._outcome(GateState.AUTHENTICATED, access_method=ACCESS_DIRECT_LINK)

        record = self.cache.load(self.code, self.kind)
        today = self.clock().date()
        if is_valid(record, tenant.token_for(self.kind), today):
            return self._outcome(
                GateState.AUTHENTICATED,
                access_method=ACCESS_PASSWORD_MODAL,
                visitor_name=record.visitor_name,
                session_id=record.session_id,
            )
        if record is not None:
            self.cache.clear(self.code, self.kind)
        return self._outcome(GateState.UNAUTHENTICATED)

    def _validate(self, password: str, visitor_name: str | None) -> str | None:
        if not (password or "").strip():
            return MSG_PASSWORD_REQUIRED
        return None

    def submit(self, password: str, visitor_name: str | None = None) -> GateOutcome:
        if self._closed:
            return self._stale()
        if self._state is GateState.VERIFYING:
            raise GateBusy(f"{self.kind} gate for {self.code} is already verifying")
        if self._state is GateState.LOADING:
            loaded = self.load()
            if loaded.authenticated or loaded.stale:
                return loaded
        elif self._state is GateState.AUTHENTICATED and self._last is not None:
            return self._last

        message = self._validate(password or "", visitor_name)
        if message:
            return self._outcome(GateState.UNAUTHENTICATED, message=message, retry=True)

        self._state = GateState.VERIFYING
        try:
            verification = self.verifier.verify(self.code, self.kind, password)
        except CredentialStoreUnavailable as e:
            logger.warning("%s verification failed closed for %s: %s", self.kind, self.code, e)
            if self._closed:
                return self._stale()
            return self._outcome(GateState.UNAUTHENTICATED, message=MSG_UNAVAILABLE, retry=True)
        except BaseException:
            self._state = GateState.UNAUTHENTICATED
            raise

        if self._closed:
            return self._stale()
        if not verification.requires_password and not self._proof_required():
            return self._outcome(GateState.AUTHENTICATED, access_method=ACCESS_DIRECT_LINK)
        if not verification.ok:
            logger.warning("Wrong %s password for festival %s", self.kind, self.code)
            return self._outcome(GateState.UNAUTHENTICATED, message=MSG_WRONG_PASSWORD, retry=True)
        return self._grant(verification, password, visitor_name)

    def _grant(self, verification: Verification, password: str, visitor_name: str | None) -> GateOutcome:
        raise NotImplementedError


class ViewerGate(AuthGate):
    kind = GATE_VIEWER

    def __init__(
        self,
        code: str,
        *,
        access_logger: AccessLogger,
        user_agent: str | None = None,
        ip_address: str | None = None,
        **kwargs,
    ):
        super().__init__(code, **kwargs)
        self.access_logger = access_logger
        self.user_agent = user_agent
        self.ip_address = ip_address

    def _validate(self, password: str, visitor_name: str | None) -> str | None:
        if not (visitor_name or "").strip():
            return MSG_NAME_REQUIRED
        return super()._validate(password, visitor_name)

    def _grant(self, verification: Verification, password: str, visitor_name: str | None) -> GateOutcome:
        name = normalize_visitor_name(visitor_name)
        session_id = new_session_id()
        self.access_logger.record(
            verification.tenant_id,
            name,
            ACCESS_PASSWORD_MODAL,
            password,
            session_id,
            user_agent=self.user_agent,
            ip_address=self.ip_address,
        )
        self.cache.store(
            self.code,
            self.kind,
            SessionRecord(
                authenticated=True,
                valid_for_date=self.clock().date(),
                version_token=verification.version_token,
                visitor_name=name,
                session_id=session_id,
            ),
        )
        logger.info("Viewer access granted festival=%s visitor=%s", self.code, name)
        return self._outcome(
            GateState.AUTHENTICATED,
            message=MSG_ACCESS_GRANTED,
            access_method=ACCESS_PASSWORD_MODAL,
            visitor_name=name,
            session_id=session_id,
        )


class AdminGate(AuthGate):
    kind = GATE_ADMIN

    def __init__(self, code: str, *, elevated: bool = False, **kwargs):
        super().__init__(code, **kwargs)
        # Elevated gates guard changes to credentials and settings: they always
        # need a proven admin session, even on festivals without a password.
        self.elevated = elevated

    def _proof_required(self) -> bool:
        return self.elevated

    def load(self, url_secret: str | None = None) -> GateOutcome:
        """
        An optional secret from the page URL is tried as if it had been submitted.
        A URL secret that does not match just leaves the challenge showing.
        """
        out = super().load()
        if out.state is GateState.UNAUTHENTICATED and self._tenant is not None and (url_secret or "").strip():
            out = self.submit(url_secret)
            if out.message == MSG_WRONG_PASSWORD:
                return self._outcome(GateState.UNAUTHENTICATED)
        return out

    def _grant(self, verification: Verification, password: str, visitor_name: str | None) -> GateOutcome:
        self.cache.store(
            self.code,
            self.kind,
            SessionRecord(
                authenticated=True,
                valid_for_date=self.clock().date(),
                version_token=verification.version_token,
            ),
        )
        logger.info("Admin access granted festival=%s", self.code)
        return self._outcome(GateState.AUTHENTICATED, message=MSG_ACCESS_GRANTED, access_method=ACCESS_PASSWORD_MODAL)
