"""Locale-aware date formatting for notification emails (en, vi)."""

from datetime import datetime, timezone
from typing import Literal, Union
from zoneinfo import ZoneInfo

Locale = Literal["en", "vi"]

_EN_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
_EN_MONTHS = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
_VI_WEEKDAYS = ["Thứ Hai", "Thứ Ba", "Thứ Tư", "Thứ Năm", "Thứ Sáu", "Thứ Bảy", "Chủ Nhật"]


def resolve_locale(preferred: str | None) -> Locale:
    return "vi" if (preferred or "").lower().startswith("vi") else "en"


def to_local(value: Union[datetime, str], tz: str) -> datetime:
    """Parse an ISO string if needed and convert to the display timezone.

    Naive datetimes are taken as UTC.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(tz))


def format_time(value: Union[datetime, str], locale: Locale, tz: str) -> str:
    local = to_local(value, tz)
    if locale == "vi":
        return local.strftime("%H:%M")
    hour = local.hour % 12 or 12
    suffix = "AM" if local.hour < 12 else "PM"
    return f"{hour}:{local.minute:02d} {suffix}"


def format_date(value: Union[datetime, str], locale: Locale, tz: str) -> str:
    local = to_local(value, tz)
    if locale == "vi":
        return local.strftime("%d/%m/%Y")
    return f"{_EN_MONTHS[local.month - 1]} {local.day}, {local.year}"


def format_datetime(value: Union[datetime, str], locale: Locale, tz: str) -> str:
    """``Tuesday, March 3, 2026, 9:00 AM`` or ``Thứ Ba, 03/03/2026 09:00``."""
    local = to_local(value, tz)
    if locale == "vi":
        weekday = _VI_WEEKDAYS[local.weekday()]
        return f"{weekday}, {format_date(local, locale, tz)} {format_time(local, locale, tz)}"
    weekday = _EN_WEEKDAYS[local.weekday()]
    return f"{weekday}, {format_date(local, locale, tz)}, {format_time(local, locale, tz)}"
