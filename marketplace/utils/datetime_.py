import datetime


def get_datetime() -> datetime.datetime:
    """Now, timezone aware (UTC)."""
    return datetime.datetime.now(datetime.timezone.utc)


def get_date_key(moment: datetime.datetime | None = None) -> str:
    """ISO date (YYYY-MM-DD) used to bucket daily counters."""
    return (moment or get_datetime()).date().isoformat()


def as_aware(moment: datetime.datetime) -> datetime.datetime:
    # SQLite hands timestamps back naive.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=datetime.timezone.utc)
    return moment
