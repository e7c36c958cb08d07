from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.festgate.constants import ACCESS_METHODS
from app.festgate.db import transaction
from app.festgate.errors import LogAppendFailed
from app.festgate.models import AccessLogEntry, VisitorStats
from app.festgate.utils import normalize_visitor_name, utcnow

logger = logging.getLogger(__name__)


def _refresh_stats(s: Session, stats: VisitorStats, entry: AccessLogEntry) -> None:
    total, unique = s.execute(
        select(func.count(AccessLogEntry.id), func.count(func.distinct(AccessLogEntry.visitor_name))).where(
            AccessLogEntry.festival_id == entry.festival_id
        )
    ).one()
    stats.total_visits = int(total or 0)
    stats.unique_visitors = int(unique or 0)
    stats.last_visitor_name = entry.visitor_name
    stats.last_visit_at = entry.accessed_at
    stats.updated_at = entry.accessed_at


@dataclass(frozen=True)
class AccessLogger:
    """
    Appends access log entries and keeps festival_visitor_stats in step.

    The stats row is locked before the insert and recounted after it, all in one
    transaction, so concurrent visits serialize per festival instead of racing a
    read-then-write of the counters.
    """

    sm: sessionmaker
    clock: Callable[[], datetime] = field(default=utcnow)

    def append(
        self,
        tenant_id: int,
        visitor_name: str,
        method: str,
        password_used: str | None,
        session_id: str | None,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> AccessLogEntry:
        if method not in ACCESS_METHODS:
            raise LogAppendFailed(f"Unknown access method: {method!r}")
        name = normalize_visitor_name(visitor_name)
        if not name:
            raise LogAppendFailed("Visitor name is required.")

        try:
            with transaction(self.sm) as s:
                stats = s.execute(
                    select(VisitorStats).where(VisitorStats.festival_id == tenant_id).with_for_update()
                ).scalar_one_or_none()
                if stats is None:
                    stats = VisitorStats(festival_id=tenant_id, unique_visitors=0, total_visits=0)
                    s.add(stats)

                entry = AccessLogEntry(
                    festival_id=tenant_id,
                    visitor_name=name,
                    access_method=method,
                    password_used=password_used,
                    accessed_at=self.clock(),
                    user_agent=(user_agent or None),
                    ip_address=(ip_address or None),
                    session_id=session_id,
                )
                s.add(entry)
                s.flush()
                _refresh_stats(s, stats, entry)
                return entry
        except SQLAlchemyError as e:
            raise LogAppendFailed(f"Access log append failed for festival {tenant_id}") from e

    def record(
        self,
        tenant_id: int,
        visitor_name: str,
        method: str,
        password_used: str | None,
        session_id: str | None,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> bool:
        """
        Best-effort append. Failures are logged and swallowed; access has already been granted.
        """
        try:
            entry = self.append(
                tenant_id,
                visitor_name,
                method,
                password_used,
                session_id,
                user_agent=user_agent,
                ip_address=ip_address,
            )
        except Exception:
            logger.exception("Access log append failed (festival_id=%s session_id=%s)", tenant_id, session_id)
            return False
        logger.info("Logged visit festival_id=%s visitor=%s method=%s", tenant_id, entry.visitor_name, method)
        return True
