"""Subject and HTML rendering for notification emails.

Rendering is pure: the same inputs always produce the same message, so a
render step can be replayed safely.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from functools import lru_cache
from typing import Optional, Union

from jinja2 import Environment, PackageLoader, select_autoescape

from edujobs.services.email.formatting import (
    Locale,
    format_date,
    format_datetime,
    format_time,
)

When = Union[datetime, str]


@dataclass
class RenderedEmail:
    subject: str
    html: str

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


@lru_cache(maxsize=1)
def get_environment() -> Environment:
    return Environment(
        loader=PackageLoader("edujobs.services.email", "templates"),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def _render(template: str, **context) -> str:
    return get_environment().get_template(template).render(**context)


def render_schedule_change(
    *,
    course_name: str,
    class_name: str,
    old_start: When,
    old_end: When,
    new_start: When,
    new_end: When,
    old_room: Optional[str],
    new_room: Optional[str],
    schedule_url: str,
    center_name: str,
    recipient_name: Optional[str],
    locale: Locale,
    tz: str,
) -> RenderedEmail:
    if locale == "vi":
        subject = f"Lịch học thay đổi: {course_name} - {class_name}"
    else:
        subject = f"Schedule Changed: {course_name} - {class_name}"
    html = _render(
        "schedule_change.html",
        locale=locale,
        center_name=center_name,
        greeting_name=recipient_name,
        course_name=course_name,
        class_name=class_name,
        old_start=format_datetime(old_start, locale, tz),
        old_end=format_time(old_end, locale, tz),
        new_start=format_datetime(new_start, locale, tz),
        new_end=format_time(new_end, locale, tz),
        old_room=old_room,
        new_room=new_room,
        room_changed=old_room != new_room and bool(old_room or new_room),
        button_url=schedule_url,
        button_text="Xem Lịch Học" if locale == "vi" else "View Schedule",
    )
    return RenderedEmail(subject=subject, html=html)


def render_session_cancelled(
    *,
    course_name: str,
    class_name: str,
    start: When,
    end: When,
    room: Optional[str],
    schedule_url: str,
    center_name: str,
    recipient_name: Optional[str],
    locale: Locale,
    tz: str,
    is_bulk: bool = False,
    deleted_count: Optional[int] = None,
) -> RenderedEmail:
    vi = locale == "vi"
    if is_bulk:
        if vi:
            subject = f"{deleted_count} buổi học đã bị hủy: {course_name} - {class_name}"
        else:
            subject = f"{deleted_count} Sessions Cancelled: {course_name} - {class_name}"
    elif vi:
        subject = f"Buổi học đã bị hủy: {course_name} - {class_name}"
    else:
        subject = f"Session Cancelled: {course_name} - {class_name}"

    html = _render(
        "session_cancelled.html",
        locale=locale,
        header_color="#dc2626",
        center_name=center_name,
        greeting_name=recipient_name,
        course_name=course_name,
        class_name=class_name,
        is_bulk=is_bulk,
        deleted_count=deleted_count,
        start_date=format_date(start, locale, tz),
        start=format_datetime(start, locale, tz),
        end=format_time(end, locale, tz),
        room=room,
        button_url=schedule_url,
        button_text="Xem Lịch Học" if vi else "View Schedule",
    )
    return RenderedEmail(subject=subject, html=html)


def render_invitation(
    *, center_name: str, role: str, signup_url: str, recipient_name: Optional[str] = None
) -> RenderedEmail:
    return RenderedEmail(
        subject=f"You've been invited to join {center_name} on ClassLite",
        html=_render(
            "invitation.html",
            locale="en",
            center_name=center_name,
            greeting_name=recipient_name,
            role=role,
            button_url=signup_url,
            button_text="Join Now",
        ),
    )


def render_account_deleted(
    *, recipient_name: Optional[str], locale: Locale
) -> RenderedEmail:
    subject = (
        "Tài khoản ClassLite của bạn đã bị xóa"
        if locale == "vi"
        else "Your ClassLite account has been deleted"
    )
    return RenderedEmail(
        subject=subject,
        html=_render(
            "account_deleted.html",
            locale=locale,
            center_name="ClassLite",
            greeting_name=recipient_name,
        ),
    )
