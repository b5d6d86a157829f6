from datetime import datetime, timedelta, timezone

utc_now = lambda: datetime.now(timezone.utc)  # noqa: E731
utc_now_ms = lambda: int(utc_now().timestamp() * 1000)  # noqa: E731


def as_utc(value: datetime) -> datetime:
    """Mongo returns naive datetimes; treat them as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def seconds_ago(seconds: float) -> datetime:
    return utc_now() - timedelta(seconds=seconds)
