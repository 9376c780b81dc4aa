import datetime as dt


def utc_now_iso() -> str:
    """Timestamp used for audit fields and change events (ISO-8601, UTC)."""
    return dt.datetime.now(dt.timezone.utc).isoformat()
