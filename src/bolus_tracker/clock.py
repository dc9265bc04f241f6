"""Time helpers shared by the services."""

from datetime import UTC, date, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo

ONE_DAY = timedelta(days=1)


def utc_now() -> datetime:
    """Return the current UTC time truncated to whole milliseconds."""
    now = datetime.now(tz=UTC)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def resolve_timezone(name: str | None) -> tzinfo:
    """Return the named zone, or the system local zone when unset."""
    if name:
        return ZoneInfo(name)
    local = datetime.now().astimezone().tzinfo
    return local if local is not None else UTC


def start_of_day(moment: datetime, tz: tzinfo) -> datetime:
    """Return local midnight of the day containing ``moment``, in UTC."""
    local = moment.astimezone(tz)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(UTC)


def local_day(moment: datetime, tz: tzinfo) -> date:
    """Return the local calendar date of ``moment``."""
    return moment.astimezone(tz).date()


def format_datetime(moment: datetime, tz: tzinfo) -> str:
    """Format a timestamp as ``dd/mm/YYYY HH:MM`` in the given zone."""
    return moment.astimezone(tz).strftime("%d/%m/%Y %H:%M")
