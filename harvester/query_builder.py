"""Build content-search predicates and job names from user filters."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta

from .errors import QueryValidationError
from .utils import sanitize_token

DEFAULT_LOOKBACK_DAYS = 2
MAX_NAME_LENGTH = 200

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DAYS_PATTERN = re.compile(r"^\d+$")


def resolve_start_date(
    start_date: str | None = None,
    days: str | int | None = None,
    today: date | None = None,
) -> date:
    """Pick the lower bound of the received-date clause."""
    has_date = start_date not in (None, "")
    has_days = days not in (None, "")
    if has_date and has_days:
        raise QueryValidationError("Use either a start date or a day count, not both.")

    today = today or date.today()
    if has_date:
        if not _DATE_PATTERN.match(start_date):
            raise QueryValidationError(f"Start date must be YYYY-MM-DD, got '{start_date}'.")
        try:
            return datetime.strptime(start_date, "%Y-%m-%d").date()
        except ValueError as exc:
            raise QueryValidationError(f"Start date '{start_date}' is not a valid date.") from exc

    if has_days:
        raw = str(days).strip()
        if not _DAYS_PATTERN.match(raw):
            raise QueryValidationError(f"Day count must be a whole number, got '{days}'.")
        return today - timedelta(days=int(raw))

    return today - timedelta(days=DEFAULT_LOOKBACK_DAYS)


def _quoted(value: str) -> str:
    return '"' + value.replace('"', "").strip() + '"'


def build_query(
    start_date: str | None = None,
    days: str | int | None = None,
    subject: str | None = None,
    sender: str | None = None,
    today: date | None = None,
) -> str:
    """Return the KQL predicate: date clause, then subject, then sender."""
    since = resolve_start_date(start_date, days, today)
    clauses = [f"Received>={since.isoformat()}"]
    if subject and subject.strip():
        clauses.append(f"Subject:{_quoted(subject)}")
    if sender and sender.strip():
        clauses.append(f"From:{_quoted(sender)}")
    return "(" + " AND ".join(clauses) + ")"


def build_search_name(
    mailbox: str | None,
    subject: str | None = None,
    sender: str | None = None,
    now: datetime | None = None,
) -> str:
    """Derive a job identity from the run time, mailbox and filters."""
    now = now or datetime.now()
    parts = [now.strftime("%Y%m%d_%H%M%S")]
    local_part = (mailbox or "").split("@", 1)[0]
    for value in (local_part, subject, sender):
        token = sanitize_token(value)
        if token:
            parts.append(token)
    return "_".join(parts)[:MAX_NAME_LENGTH]
