"""Collaborators handed to job bodies as ``ctx.services``."""

from dataclasses import dataclass, field
from typing import Any, Optional

from edujobs.config import Settings, get_settings
from edujobs.services.email.transport import EmailTransport
from edujobs.services.extraction import TextExtractor
from edujobs.services.identity import IdentityProvider, NullIdentityProvider
from edujobs.services.llm_base import BaseLLMClient


@dataclass
class JobServices:
    """Repositories and external clients used by the concrete jobs.

    ``email`` and ``llm`` are None when unconfigured; jobs take their
    skipped or not-configured paths in that case.
    """

    accounts: Any = None
    imports: Any = None
    logistics: Any = None
    notifications: Any = None
    exercises: Any = None
    grading: Any = None
    email: Optional[EmailTransport] = None
    identity: IdentityProvider = field(default_factory=NullIdentityProvider)
    documents: Any = None
    extractor: TextExtractor = field(default_factory=TextExtractor)
    llm: Optional[BaseLLMClient] = None
    settings: Settings = field(default_factory=get_settings)

    def schedule_url(self, center_id: str) -> str:
        return f"{self.settings.webapp_url.rstrip('/')}/{center_id}/logistics/scheduler"


def idempotency_key(run_id: str, step_name: str) -> str:
    """Key passed to the email provider so a replayed send delivers once."""
    return f"{run_id}:{step_name}"


async def center_name_or_default(services: JobServices, center_id: str, default: str) -> str:
    return (await services.accounts.get_center_name(center_id)) or default
