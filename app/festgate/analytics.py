"""
Access log report: filter, sort, paginate, summarize.

Functions take any sequence of objects exposing the AccessLogEntry attributes
(ORM rows or plain records) and never mutate their input.
"""
from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.festgate.constants import (
    ACCESS_METHOD_LABELS,
    ACCESS_METHODS,
    DATE_RANGE_DAYS,
    DATE_RANGES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_TOP_VISITORS,
    SORTABLE_COLUMNS,
)
from app.festgate.models import AccessLogEntry, Festival, VisitorStats


@dataclass(frozen=True)
class LogFilter:
    search_term: str | None = None
    date_range: str = "all"
    access_method: str | None = None

    @classmethod
    def from_args(cls, args: Any) -> "LogFilter":
        date_range = (args.get("range") or "all").strip().lower()
        method = (args.get("method") or "").strip().lower()
        return cls(
            search_term=(args.get("q") or "").strip() or None,
            date_range=date_range if date_range in DATE_RANGES else "all",
            access_method=method if method in ACCESS_METHODS else None,
        )


@dataclass(frozen=True)
class Page:
    items: list
    page: int
    page_size: int
    total: int
    total_pages: int

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


@dataclass(frozen=True)
class Summary:
    total: int
    method_breakdown: list[dict] = field(default_factory=list)
    top_visitors: list[dict] = field(default_factory=list)


def date_cutoff(date_range: str, now: datetime) -> datetime | None:
    if date_range == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    days = DATE_RANGE_DAYS.get(date_range)
    if days is None:
        return None
    return now - timedelta(days=days)


def filter_logs(logs: Sequence, criteria: LogFilter, *, now: datetime) -> list:
    out = list(logs)
    if criteria.search_term:
        needle = criteria.search_term.lower()
        out = [log for log in out if needle in (log.visitor_name or "").lower()]

    cutoff = date_cutoff(criteria.date_range, now)
    if cutoff is not None:
        out = [log for log in out if log.accessed_at is not None and log.accessed_at >= cutoff]

    if criteria.access_method and criteria.access_method != "all":
        out = [log for log in out if log.access_method == criteria.access_method]
    return out


def sort_logs(logs: Sequence, column: str = "accessed_at", direction: str = "desc") -> list:
    """Stable sort by one column; None values always go last, in input order."""
    if column not in SORTABLE_COLUMNS:
        raise ValueError(f"Cannot sort by {column!r}")
    present = [log for log in logs if getattr(log, column, None) is not None]
    missing = [log for log in logs if getattr(log, column, None) is None]
    present.sort(key=lambda log: getattr(log, column), reverse=(direction == "desc"))
    return present + missing


def paginate(logs: Sequence, page: int, page_size: int = DEFAULT_PAGE_SIZE) -> Page:
    if page_size < 1:
        raise ValueError("page_size must be positive")
    total = len(logs)
    total_pages = math.ceil(total / page_size)
    page = max(1, min(page, total_pages)) if total_pages else 1
    start = (page - 1) * page_size
    return Page(
        items=list(logs[start : start + page_size]),
        page=page,
        page_size=page_size,
        total=total,
        total_pages=total_pages,
    )


def summarize(logs: Sequence, top_n: int = DEFAULT_TOP_VISITORS) -> Summary:
    total = len(logs)
    by_method = Counter(log.access_method for log in logs)
    breakdown = [
        {
            "method": method,
            "label": ACCESS_METHOD_LABELS[method],
            "count": by_method.get(method, 0),
            "percent": round(by_method.get(method, 0) * 100.0 / total, 1) if total else 0.0,
        }
        for method in ACCESS_METHODS
    ]
    # Counter keeps first-seen order; sorted() is stable, so ties stay in that order.
    visits = Counter(log.visitor_name for log in logs)
    ranked = sorted(visits.items(), key=lambda kv: kv[1], reverse=True)[:top_n]
    return Summary(
        total=total,
        method_breakdown=breakdown,
        top_visitors=[{"name": name, "count": count} for name, count in ranked],
    )


def load_logs(s: Session, festival_id: int) -> list[AccessLogEntry]:
    return list(
        s.execute(
            select(AccessLogEntry)
            .where(AccessLogEntry.festival_id == festival_id)
            .order_by(AccessLogEntry.accessed_at.desc(), AccessLogEntry.id.desc())
        ).scalars()
    )


def build_report(
    s: Session,
    festival: Festival,
    criteria: LogFilter,
    *,
    now: datetime,
    sort_column: str = "accessed_at",
    sort_direction: str = "desc",
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    top_n: int = DEFAULT_TOP_VISITORS,
) -> dict:
    stats = s.get(VisitorStats, festival.id)
    filtered = filter_logs(load_logs(s, festival.id), criteria, now=now)
    ordered = sort_logs(filtered, sort_column, sort_direction)
    pg = paginate(ordered, page, page_size)
    summary = summarize(filtered, top_n)

    report = {
        "festival": festival.public_info(),
        "stats": stats.to_dict() if stats else VisitorStats(unique_visitors=0, total_visits=0).to_dict(),
        "filters": {
            "q": criteria.search_term or "",
            "range": criteria.date_range,
            "method": criteria.access_method or "all",
            "sort": sort_column,
            "dir": sort_direction,
        },
        "summary": {
            "total": summary.total,
            "method_breakdown": summary.method_breakdown,
            "top_visitors": summary.top_visitors,
        },
        "logs": [log.to_dict() for log in pg.items],
        "pagination": {
            "page": pg.page,
            "page_size": pg.page_size,
            "total": pg.total,
            "total_pages": pg.total_pages,
            "has_prev": pg.has_prev,
            "has_next": pg.has_next,
        },
        "visitor_tracking": {"enabled": bool(festival.requires_password), "notice": None},
    }
    if not festival.requires_password:
        report["visitor_tracking"]["notice"] = (
            "This festival does not require a password, so visits are not logged. "
            "Enable a viewer password to collect visitor analytics."
        )
    return report
