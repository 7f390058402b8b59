"""Transactional email: transports, locale formatting and templates."""

from edujobs.services.email.render import (
    RenderedEmail,
    render_account_deleted,
    render_invitation,
    render_schedule_change,
    render_session_cancelled,
)
from edujobs.services.email.transport import EmailSendError, EmailTransport, ResendTransport

__all__ = [
    "EmailSendError",
    "EmailTransport",
    "RenderedEmail",
    "ResendTransport",
    "render_account_deleted",
    "render_invitation",
    "render_schedule_change",
    "render_session_cancelled",
]
