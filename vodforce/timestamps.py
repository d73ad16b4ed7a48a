import re
from datetime import datetime, timezone

from vodforce.errors import InvalidInput

UNIX_PATTERN = re.compile(r"^\d+$")

FORMATS = [
    "%Y-%m-%d %H:%M:%S UTC",
    "%Y-%m-%d %H:%M:%S",
    "%d-%m-%Y %H:%M",
]


def parse_timestamp(timestamp):
    """Parse a Unix timestamp or a UTC date string into epoch seconds.

    Accepted shapes: ``1657871396``, ``2022-07-15 07:49:56 UTC``,
    ``2022-07-15T07:49:56+00:00`` (RFC 3339), ``2022-07-15 07:49:56`` and
    ``15-07-2022 07:49``. Naive values are read as UTC.
    """
    if isinstance(timestamp, int):
        if timestamp < 0:
            raise InvalidInput(f"Negative timestamp: {timestamp}")
        return timestamp

    value = str(timestamp).strip()
    if UNIX_PATTERN.match(value):
        return int(value)

    for date_format in FORMATS:
        try:
            parsed = datetime.strptime(value, date_format)
        except ValueError:
            continue
        return to_epoch(parsed)

    if "T" in value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
        else:
            return to_epoch(parsed)

    raise InvalidInput(f"Couldn't parse the timestamp: {timestamp!r}")


def to_epoch(parsed):
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    epoch = int(parsed.timestamp())
    if epoch < 0:
        raise InvalidInput(f"Timestamp before 1970: {parsed.isoformat()}")
    return epoch


def format_timestamp(epoch):
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
