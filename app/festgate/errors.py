from __future__ import annotations


class FestgateError(RuntimeError):
    pass


class TenantNotFound(FestgateError):
    def __init__(self, code: str):
        super().__init__(f"Festival not found: {code!r}")
        self.code = code


class CredentialStoreUnavailable(FestgateError):
    """The credential store could not be reached in time. Callers fail closed."""


class VerificationFailed(FestgateError):
    pass


class LogAppendFailed(FestgateError):
    pass


class SessionCacheCorrupt(FestgateError):
    pass


class GateBusy(FestgateError):
    """A verify is already in flight on this gate instance."""
