"""Cron schedule expressions.

Thin wrapper around croniter that turns parse failures into
InvalidSchedule at the moment an expression is supplied, never later when
a tick tries to use it.

Supports standard five-field expressions and six-field expressions with a
trailing seconds column, as croniter does.
"""

from __future__ import annotations

from datetime import UTC, datetime

from croniter import croniter

from pyagenda.errors import InvalidSchedule


def validate_expression(expression: str) -> None:
    """Raise InvalidSchedule unless ``expression`` is a usable cron expression."""
    if not isinstance(expression, str) or not expression.strip():
        raise InvalidSchedule(str(expression), "empty expression")
    if not croniter.is_valid(expression):
        raise InvalidSchedule(expression)


def next_occurrence(expression: str, after: datetime | None = None) -> datetime:
    """Return the first occurrence of ``expression`` strictly after ``after``.

    Args:
        expression: Cron expression (5 or 6 fields)
        after: Base instant. Defaults to now (UTC). Naive datetimes are
            treated as UTC.

    Returns:
        Timezone-aware datetime of the next occurrence.

    Raises:
        InvalidSchedule: If the expression cannot be evaluated.
    """
    validate_expression(expression)

    base = after if after is not None else datetime.now(UTC)
    if base.tzinfo is None:
        base = base.replace(tzinfo=UTC)

    try:
        return croniter(expression, base).get_next(datetime)
    except (ValueError, KeyError) as e:
        # is_valid() accepts some expressions that can never fire
        raise InvalidSchedule(expression, str(e)) from e
