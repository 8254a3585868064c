from datetime import datetime, timezone


def utc_timestamp() -> str:
    """
    Current UTC time as ISO-8601 with millisecond precision and a ``Z`` suffix.

    Returns:
        str: e.g. ``2024-01-01T12:00:00.000Z``
    """
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
