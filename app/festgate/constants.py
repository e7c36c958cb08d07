"""
Central constants for the festgate application.
"""
from __future__ import annotations

# Gate kinds; each has its own secret and session namespace
GATE_VIEWER = "viewer"
GATE_ADMIN = "admin"
GATE_KINDS = (GATE_VIEWER, GATE_ADMIN)

# Access methods recorded on access log entries
ACCESS_PASSWORD_MODAL = "password_modal"
ACCESS_DIRECT_LINK = "direct_link"
ACCESS_METHODS = (ACCESS_PASSWORD_MODAL, ACCESS_DIRECT_LINK)

ACCESS_METHOD_LABELS = {
    ACCESS_PASSWORD_MODAL: "Password Modal",
    ACCESS_DIRECT_LINK: "Direct Link",
}

# Relative date ranges for the analytics report ("week" is now - 7 days, not a calendar week)
DATE_RANGES = ("today", "week", "month", "all")
DATE_RANGE_DAYS = {"week": 7, "month": 30}

# Columns an access log report may be sorted by
SORTABLE_COLUMNS = frozenset(
    {
        "id",
        "visitor_name",
        "access_method",
        "password_used",
        "accessed_at",
        "user_agent",
        "ip_address",
        "session_id",
    }
)

DEFAULT_PAGE_SIZE = 25
DEFAULT_TOP_VISITORS = 10

FESTIVAL_CODE_LENGTH = 8

MSG_WRONG_PASSWORD = "Wrong password entered, retry"
MSG_NAME_REQUIRED = "Please enter your name"
MSG_PASSWORD_REQUIRED = "Please enter a password"
MSG_UNAVAILABLE = "Festival service unavailable, please retry"
MSG_ACCESS_GRANTED = "Access granted!"
