"""
app/scheduler/cron.py

Cron expression handling for scrape job schedules.

Accepted forms
--------------
  5 fields  ``minute hour day month day_of_week``
  6 fields  ``second minute hour day month day_of_week``
  7 fields  ``second minute hour day month day_of_week year``

Numeric day-of-week values follow cron (0 or 7 = Sunday, 1 = Monday). APScheduler
numbers Monday as 0, so numeric tokens are rewritten to day names before the
trigger is built.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from apscheduler.triggers.cron import CronTrigger

_DAY_NAMES: tuple[str, ...] = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")
_DAY_NUMBERS: dict[str, int] = {name: index for index, name in enumerate(_DAY_NAMES)}


class CronSchedules:
    """
    Common schedule presets, in the 6-field form.
    """

    DAILY = "0 0 2 * * *"
    HOURLY = "0 0 * * * *"
    WEEKLY = "0 0 2 * * 0"
    TWICE_DAILY = "0 0 2,14 * * *"

    @staticmethod
    def every_n_hours(hours: int) -> str:
        if hours < 1 or hours > 23:
            raise ValueError("hours must be between 1 and 23.")
        return f"0 0 */{hours} * * *"

    @staticmethod
    def daily_at(hour: int, minute: int = 0) -> str:
        if not 0 <= hour <= 23 or not 0 <= minute <= 59:
            raise ValueError("hour must be 0-23 and minute 0-59.")
        return f"0 {minute} {hour} * * *"


def _day_number(token: str) -> int:
    token = token.strip().lower()
    if token.isdigit():
        value = int(token)
        if value > 7:
            raise ValueError(f"day-of-week value out of range: {token}")
        return value % 7
    if token[:3] in _DAY_NUMBERS:
        return _DAY_NUMBERS[token[:3]]
    raise ValueError(f"unknown day-of-week token: {token!r}")


def translate_day_of_week(field_value: str) -> str:
    """
    Rewrite a cron day-of-week field into APScheduler day names.
    """

    if field_value in {"*", "?"}:
        return "*"

    days: set[int] = set()
    for part in field_value.split(","):
        expr, _, step_text = part.partition("/")
        step = int(step_text) if step_text else 1
        if step < 1:
            raise ValueError(f"invalid day-of-week step: {part!r}")

        if expr in {"*", "?"}:
            start, end = 0, 6
        elif "-" in expr:
            first, last = expr.split("-", 1)
            start, end = _day_number(first), _day_number(last)
            # "1-7" means Monday through Sunday
            if end == 0 and last.strip() == "7":
                end = 7
        else:
            start = _day_number(expr)
            end = 6 if step_text else start

        if start > end:
            raise ValueError(f"invalid day-of-week range: {part!r}")
        days.update(day % 7 for day in range(start, end + 1, step))

    if not days:
        raise ValueError(f"empty day-of-week field: {field_value!r}")
    # Monday-first ordering reads naturally in APScheduler's repr.
    return ",".join(_DAY_NAMES[day] for day in sorted(days, key=lambda day: (day - 1) % 7))


@dataclass(frozen=True)
class CronSchedule:
    """
    Parsed cron expression able to compute the next fire time.
    """

    expression: str
    timezone: str = "UTC"
    _trigger: CronTrigger = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_trigger", self._build_trigger())

    @classmethod
    def parse(cls, expression: str, *, timezone: str = "UTC") -> "CronSchedule":
        return cls(expression=expression, timezone=timezone)

    @classmethod
    def is_valid(cls, expression: str) -> bool:
        try:
            cls.parse(expression)
        except ValueError:
            return False
        return True

    def next_after(self, moment: datetime) -> datetime | None:
        """
        Return the first fire time strictly after `moment`, in UTC.
        """

        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        fire_time = self._trigger.get_next_fire_time(None, moment + timedelta(microseconds=1))
        if fire_time is None:
            return None
        return fire_time.astimezone(timezone.utc)

    def _build_trigger(self) -> CronTrigger:
        if not isinstance(self.expression, str) or not self.expression.strip():
            raise ValueError("Cron expression must be a non-empty string.")

        fields = self.expression.split()
        if len(fields) == 5:
            second, (minute, hour, day, month, day_of_week), year = "0", fields, None
        elif len(fields) == 6:
            second, minute, hour, day, month, day_of_week = fields
            year = None
        elif len(fields) == 7:
            second, minute, hour, day, month, day_of_week, year = fields
        else:
            raise ValueError(
                f"Cron expression '{self.expression}' must have 5, 6 or 7 fields, got {len(fields)}."
            )

        try:
            return CronTrigger(
                year=year,
                month=month,
                day="*" if day == "?" else day,
                day_of_week=translate_day_of_week(day_of_week),
                hour=hour,
                minute=minute,
                second=second,
                timezone=self.timezone,
            )
        except (ValueError, TypeError, LookupError) as exc:
            raise ValueError(f"Invalid cron expression '{self.expression}': {exc}") from exc
