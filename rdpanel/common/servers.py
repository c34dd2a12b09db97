"""Sorting, filtering and expiry helpers over server lists."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Literal, Sequence

from rdpanel.core.types import Server

SortField = Literal["name", "distro", "expiry_date", "status"]
SortDirection = Literal["asc", "desc"]

SORT_FIELDS: tuple[str, ...] = ("name", "distro", "expiry_date", "status")
EXPIRY_WARNING_DAYS = 7


def parse_date(value: str | datetime | None) -> datetime | None:
    """Parse an ISO date or datetime. Naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_servers(
    servers: Sequence[Server],
    field: SortField = "name",
    direction: SortDirection = "asc",
) -> list[Server]:
    """
    Return a new list sorted by field.

    Name sorts on rdns, falling back to the id. Servers without a parseable
    expiry date sort last in either direction.
    """
    if field not in SORT_FIELDS:
        return list(servers)
    reverse = direction == "desc"

    if field == "expiry_date":
        dated = [(parse_date(s.expiry_date), s) for s in servers]
        known = [pair for pair in dated if pair[0] is not None]
        unknown = [s for d, s in dated if d is None]
        known.sort(key=lambda pair: pair[0], reverse=reverse)
        return [s for _, s in known] + unknown

    if field == "name":
        key = lambda s: (s.rdns or s.id).casefold()  # noqa: E731
    else:
        key = lambda s: getattr(s, field).casefold()  # noqa: E731
    return sorted(servers, key=key, reverse=reverse)


def filter_servers(
    servers: Iterable[Server],
    distro: str | None = None,
    power_states: Sequence[str] | None = None,
    expiry_start: str | datetime | None = None,
    expiry_end: str | datetime | None = None,
) -> list[Server]:
    """Keep servers matching every given criterion. Empty criteria match all."""
    start = parse_date(expiry_start)
    end = parse_date(expiry_end)
    result = []

    for server in servers:
        if distro and server.distro != distro:
            continue
        if power_states and server.status not in power_states:
            continue
        if expiry_start or expiry_end:
            expiry = parse_date(server.expiry_date)
            if expiry is None:
                continue
            if start is not None and expiry < start:
                continue
            if end is not None and expiry > end:
                continue
        result.append(server)

    return result


def is_expiring_within(
    server_or_date: Server | str | datetime | None,
    days: int = EXPIRY_WARNING_DAYS,
    now: datetime | None = None,
) -> bool:
    """True when the expiry is between 0 and `days` whole days away."""
    value = server_or_date.expiry_date if isinstance(server_or_date, Server) else server_or_date
    expiry = parse_date(value)
    if expiry is None:
        return False

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    # Whole days, truncated toward zero
    days_until = int((expiry - now).total_seconds() / 86400)
    return 0 <= days_until <= days


def expiring_servers(
    servers: Iterable[Server], days: int = EXPIRY_WARNING_DAYS, now: datetime | None = None
) -> list[Server]:
    return [s for s in servers if is_expiring_within(s, days, now)]
