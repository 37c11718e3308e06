"""
Reward-day helpers.

Streaks and daily caps are keyed by a calendar date in ONE fixed
timezone (REWARD_DAY_TIMEZONE, UTC by default), never the server's local
time and never the user's.
"""
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context

from .exceptions import ValidationError

DEFAULT_TIMEZONE = 'UTC'


def get_reward_timezone(tz_name: str = None) -> ZoneInfo:
    if tz_name is None and has_app_context():
        tz_name = current_app.config.get('REWARD_DAY_TIMEZONE')
    return ZoneInfo(tz_name or DEFAULT_TIMEZONE)


def reward_today(now: datetime = None, tz_name: str = None) -> date:
    """
    Calendar date of ``now`` in the reward timezone.

    Naive datetimes are treated as UTC (the models store utcnow()).
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(get_reward_timezone(tz_name)).date()


def previous_day(day: date) -> date:
    return day - timedelta(days=1)


def to_day_key(day: date) -> str:
    """YYYY-MM-DD, used in idempotency keys."""
    return day.isoformat()


def parse_day(value) -> date:
    """
    Accept a date, datetime or YYYY-MM-DD string.

    Datetimes are converted to the reward timezone first.

    Raises:
        ValidationError: the string is not a calendar date
    """
    if isinstance(value, datetime):
        return reward_today(value)
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"date must be YYYY-MM-DD (got {value!r})", field='date', code='VALIDATION_ERROR')
