"""Cron pattern decoding.

Patterns use the standard five fields ``minute hour day month day_of_week``
(e.g. ``"0 9 * * *"`` = every day at 09:00 UTC), plus the usual ``@daily``
style macros. All instants are naive UTC datetimes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional

from croniter import croniter

from push_scheduler.errors import ValidationError

MACROS: Dict[str, str] = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

FIELD_COUNT = 5

# croniter gives up after this many years without a match.
MAX_YEARS_BETWEEN_MATCHES = 50

_MONTHS = ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")
_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

# field position -> symbolic names croniter understands there
_FIELD_NAMES: Dict[int, Dict[str, int]] = {
    3: {name: i for i, name in enumerate(_MONTHS, start=1)},
    4: {name: i for i, name in enumerate(_WEEKDAYS)},
}


def normalise_pattern(pattern: str) -> str:
    """Expand macros and collapse whitespace; raise ValidationError if malformed."""
    if not isinstance(pattern, str) or not pattern.strip():
        raise ValidationError("Cron pattern must not be empty")

    expression = " ".join(pattern.split())
    expression = MACROS.get(expression.lower(), expression)

    fields = expression.split(" ")
    if len(fields) != FIELD_COUNT:
        raise ValidationError(
            f"Cron pattern must have {FIELD_COUNT} fields, got {len(fields)}: '{pattern}'",
            details={"cron_pattern": pattern},
        )
    for position, field in enumerate(fields):
        _reject_reversed_ranges(position, field, pattern)
    return expression


def _reject_reversed_ranges(position: int, field: str, pattern: str) -> None:
    # croniter reads "1-0" as a wrap-around; only ascending ranges are allowed.
    for part in field.split(","):
        span = part.split("/", 1)[0]
        low, sep, high = span.partition("-")
        if not sep:
            continue
        start, end = _field_value(position, low), _field_value(position, high)
        if start is not None and end is not None and start > end:
            raise ValidationError(
                f"Invalid cron pattern '{pattern}': range '{span}' is reversed",
                details={"cron_pattern": pattern},
            )


def _field_value(position: int, token: str) -> Optional[int]:
    if token.isdigit():
        return int(token)
    return _FIELD_NAMES.get(position, {}).get(token.lower())


def decode(pattern: str, reference_time: datetime) -> datetime:
    """Return the earliest instant strictly after ``reference_time`` matching ``pattern``.

    Raises:
        ValidationError: empty or malformed pattern, out-of-range field, or no
            occurrence exists in the future (e.g. ``0 0 31 2 *``).
    """
    expression = normalise_pattern(pattern)
    reference = _as_naive_utc(reference_time)

    try:
        it = croniter(
            expression,
            reference,
            max_years_between_matches=MAX_YEARS_BETWEEN_MATCHES,
        )
        candidate = it.get_next(datetime)
        # croniter floors the reference to the minute; never hand back a tie.
        while candidate <= reference:
            candidate = it.get_next(datetime)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid cron pattern '{pattern}': {exc}",
            details={"cron_pattern": pattern},
        ) from exc
    except (KeyError, IndexError) as exc:
        raise ValidationError(
            f"Invalid cron pattern '{pattern}'",
            details={"cron_pattern": pattern},
        ) from exc

    return _as_naive_utc(candidate)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
