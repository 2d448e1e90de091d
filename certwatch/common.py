import datetime as dt

_ONE_DAY = dt.timedelta(days=1)


def as_utc(d: dt.datetime) -> dt.datetime:
    if d.tzinfo is None:
        d = d.replace(tzinfo=dt.timezone.utc)
    return d.astimezone(dt.timezone.utc)


def iso_utc(d: dt.datetime) -> str:
    return as_utc(d).isoformat().replace("+00:00", "Z")


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def days_until(ts: dt.datetime, now: dt.datetime | None = None) -> int:
    """Whole days from ``now`` to ``ts``, floored (negative once ``ts`` has passed)."""
    if now is None:
        now = utcnow()
    return (as_utc(ts) - as_utc(now)) // _ONE_DAY


def human_time(d: dt.datetime) -> str:
    """Render like ``2021-03-01 00:00:00 +0000 UTC``, the annotation/event format."""
    return as_utc(d).strftime("%Y-%m-%d %H:%M:%S +0000 UTC")
