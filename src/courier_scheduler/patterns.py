"""Temporal pattern resolver — cron expressions to concrete instants.

Patterns use the classic five fields::

    ┌ minute (0-59)
    │ ┌ hour (0-23)
    │ │ ┌ day of month (1-31)
    │ │ │ ┌ month (1-12 or JAN-DEC)
    │ │ │ │ ┌ day of week (0-6 or SUN-SAT)
    * * * * *

with wildcards, lists (``1,15``), ranges (``9-17``) and steps (``*/5``).
When both day fields are restricted, a day matches if *either* matches
(standard cron semantics).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import CroniterBadDateError, croniter

from courier_scheduler.domain.task import ensure_utc
from courier_scheduler.exceptions import InvalidPatternError

logger = logging.getLogger("courier_scheduler.patterns")

CRON_FIELD_COUNT = 5
_MAX_ADVANCE_STEPS = 8


@dataclass(frozen=True)
class CronPattern:
    """A validated recurrence pattern bound to the timezone it is evaluated in."""

    expression: str
    timezone: str = "UTC"

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(self.expression.split())

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class PatternResolver:
    """Parses cron patterns and computes their next occurrence."""

    def parse(self, pattern: str, timezone_name: str = "UTC") -> CronPattern:
        """Validate ``pattern``; raises :class:`InvalidPatternError`."""
        if not isinstance(pattern, str) or not pattern.strip():
            raise InvalidPatternError(str(pattern), "pattern is empty")

        expression = " ".join(pattern.split())
        field_count = len(expression.split())
        if field_count != CRON_FIELD_COUNT:
            raise InvalidPatternError(
                pattern,
                f"expected {CRON_FIELD_COUNT} fields, got {field_count}",
            )
        if not croniter.is_valid(expression):
            raise InvalidPatternError(pattern)

        try:
            ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidPatternError(
                pattern, f"unknown timezone {timezone_name!r}"
            ) from e

        return CronPattern(expression=expression, timezone=timezone_name)

    def next_occurrence(self, parsed: CronPattern, after: datetime) -> datetime:
        """Earliest instant strictly after ``after`` matching every field (UTC)."""
        after = ensure_utc(after)
        tz = parsed.tzinfo
        base = after.astimezone(tz)
        itr = croniter(parsed.expression, base)

        for _ in range(_MAX_ADVANCE_STEPS):
            try:
                candidate = ensure_utc(itr.get_next(datetime))
            except CroniterBadDateError as e:
                raise InvalidPatternError(parsed.expression, "pattern never matches") from e
            if candidate > after:
                return candidate.astimezone(timezone.utc)
            logger.debug(
                "Cron candidate %s not after %s for %r, advancing",
                candidate.isoformat(),
                after.isoformat(),
                parsed.expression,
            )

        raise InvalidPatternError(
            parsed.expression, "could not find an occurrence after the given instant"
        )


_default_resolver = PatternResolver()


def parse_pattern(pattern: str, timezone_name: str = "UTC") -> CronPattern:
    return _default_resolver.parse(pattern, timezone_name)


def next_occurrence(parsed: CronPattern, after: datetime) -> datetime:
    return _default_resolver.next_occurrence(parsed, after)
