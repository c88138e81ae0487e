from datetime import datetime, timezone, timedelta
from typing import Optional

import pytz
from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta


class DateUtils:
    """
    Centralized date/time helpers.

    Everything stored in the database is UTC. SQLite hands datetimes back
    without tzinfo, so anything read from a row goes through ensure_utc()
    before it is compared with now_utc().
    """

    UTC = timezone.utc

    @classmethod
    def now_utc(cls) -> datetime:
        """Get current UTC datetime - always use this for database storage"""
        return datetime.now(cls.UTC)

    @classmethod
    def ensure_utc(cls, dt: Optional[datetime]) -> Optional[datetime]:
        """Attach UTC to naive values and convert aware ones"""
        if dt is None:
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=cls.UTC)
        return dt.astimezone(cls.UTC)

    @classmethod
    def to_utc(cls, dt: datetime, source_timezone: Optional[str] = None) -> datetime:
        """
        Convert datetime to UTC

        Args:
            dt: datetime to convert
            source_timezone: source timezone (if dt is naive)
        """
        if dt.tzinfo is None and source_timezone:
            dt = pytz.timezone(source_timezone).localize(dt)
        return cls.ensure_utc(dt)

    @classmethod
    def parse_iso_string(cls, date_string: str) -> datetime:
        """Parse ISO 8601 date string to an aware UTC datetime"""
        try:
            return cls.ensure_utc(date_parser.isoparse(date_string))
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid date format: {date_string}") from e

    @classmethod
    def create_expiry_time(cls, minutes: int = 0, days: int = 0, now: Optional[datetime] = None) -> datetime:
        """Expiry datetime from now + duration"""
        return (now or cls.now_utc()) + timedelta(days=days, minutes=minutes)

    @classmethod
    def is_expired(cls, expiry_date: Optional[datetime], now: Optional[datetime] = None) -> bool:
        if expiry_date is None:
            return False
        return (now or cls.now_utc()) > cls.ensure_utc(expiry_date)

    @classmethod
    def days_ago(cls, days: int, now: Optional[datetime] = None) -> datetime:
        return (now or cls.now_utc()) - relativedelta(days=days)
