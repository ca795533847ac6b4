"""Time helpers.

the event store keeps timestamps as DateTime64(3) in UTC with no zone attached,
so every bound we pass along gets normalized to naive utc first.
"""

from datetime import datetime, timezone


def to_utc_naive(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC.

    naive values are taken as utc, which is what ingestion writes.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def format_datetime_ms(value: datetime) -> str:
    """Render a datetime as 'YYYY-MM-DD HH:MM:SS.mmm' in UTC.

    only for places that need literal text (logs, display). query bounds are
    always bound as datetime arguments, never formatted into sql.
    """
    value = to_utc_naive(value)
    return value.strftime("%Y-%m-%d %H:%M:%S.") + f"{value.microsecond // 1000:03d}"
