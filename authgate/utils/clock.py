import datetime as dt


def utcnow() -> dt.datetime:
    """Naive UTC timestamp; every stored datetime uses this convention."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)
