"""Time utilities (UTC now, sync windows, LEX date strings)."""
from __future__ import annotations
from datetime import date, datetime, timezone, timedelta


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def yesterday(today: date | None = None) -> date:
    return (today or date.today()) - timedelta(days=1)


def format_lex_date(day: date) -> str:
    """LEX list endpoint expects ``DD-MM-YYYY``."""
    return day.strftime("%d-%m-%Y")


def format_elapsed(start: datetime, end: datetime | None = None) -> str:
    end_ts = end or utc_now()
    delta: timedelta = end_ts - start
    ms = int(delta.total_seconds() * 1000)
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms/1000:.2f}s"
    return f"{delta.total_seconds()/60:.2f}m"

__all__ = ["utc_now", "yesterday", "format_lex_date", "format_elapsed"]
