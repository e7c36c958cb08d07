from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.festgate.utils import utcnow


class Base(DeclarativeBase):
    pass


class Festival(Base):
    """
    One tenant. Holds the viewer and admin secrets plus their rotation timestamps.
    A rotation timestamp changes only when its secret changes; it doubles as the
    version token carried by client session records.
    """

    __tablename__ = "festivals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)

    event_name: Mapped[str] = mapped_column(String(255), nullable=False)
    organiser: Mapped[str | None] = mapped_column(String(255), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    event_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    requires_password: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    viewer_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    viewer_secret_rotated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    admin_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    admin_secret_rotated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    stats: Mapped["VisitorStats | None"] = relationship(
        back_populates="festival",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )

    def public_info(self) -> dict:
        """Non-sensitive summary shown before authentication."""
        return {
            "code": self.code,
            "name": self.event_name,
            "organiser": self.organiser,
            "location": self.location,
            "start": self.event_start_date.isoformat() if self.event_start_date else None,
            "end": self.event_end_date.isoformat() if self.event_end_date else None,
        }


class AccessLogEntry(Base):
    """
    Append-only record of one successful viewer authentication.
    """

    __tablename__ = "access_logs"
    __table_args__ = (
        Index("idx_access_logs_festival_accessed", "festival_id", "accessed_at"),
        Index("idx_access_logs_festival_visitor", "festival_id", "visitor_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    festival_id: Mapped[int] = mapped_column(ForeignKey("festivals.id", ondelete="CASCADE"), nullable=False)

    visitor_name: Mapped[str] = mapped_column(String(255), nullable=False)  # normalized
    access_method: Mapped[str] = mapped_column(String(32), nullable=False)  # password_modal | direct_link
    password_used: Mapped[str | None] = mapped_column(String(255), nullable=True)
    accessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "festival_id": self.festival_id,
            "visitor_name": self.visitor_name,
            "access_method": self.access_method,
            "password_used": self.password_used,
            "accessed_at": self.accessed_at.isoformat() if self.accessed_at else None,
            "user_agent": self.user_agent,
            "ip_address": self.ip_address,
            "session_id": self.session_id,
        }


class VisitorStats(Base):
    """
    Per-festival aggregate, recomputed in the same transaction as each log append.
    """

    __tablename__ = "festival_visitor_stats"

    festival_id: Mapped[int] = mapped_column(ForeignKey("festivals.id", ondelete="CASCADE"), primary_key=True)
    unique_visitors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_visits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_visitor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_visit_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    festival: Mapped[Festival] = relationship(back_populates="stats")

    def to_dict(self) -> dict:
        return {
            "unique_visitors": self.unique_visitors,
            "total_visits": self.total_visits,
            "last_visitor_name": self.last_visitor_name,
            "last_visit_at": self.last_visit_at.isoformat() if self.last_visit_at else None,
        }


class AuditEvent(Base):
    """
    Append-only trail of admin actions (credential rotation, settings changes).
    Never stores secrets.
    """

    __tablename__ = "audit_events"
    __table_args__ = (Index("idx_audit_events_festival", "festival_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    festival_id: Mapped[int | None] = mapped_column(ForeignKey("festivals.id", ondelete="SET NULL"), nullable=True)
    actor_kind: Mapped[str | None] = mapped_column(String(32), nullable=True)  # e.g. "admin"

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "credential.rotate"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
