"""Event bus clients: hand events to the broker or to the in-process engine."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from edujobs.engine.errors import DeliveryError, ValidationError
from edujobs.engine.models import Event
from edujobs.engine.signing import SIGNATURE_HEADER, sign

if TYPE_CHECKING:
    from edujobs.engine.engine import JobEngine

logger = structlog.get_logger(__name__)

EventInput = Union[Event, dict[str, Any]]


@dataclass
class SendReceipt:
    """Ids assigned to the sent events, in input order."""

    ids: list[str] = field(default_factory=list)


def prepare_events(events: Union[EventInput, Iterable[EventInput]]) -> list[Event]:
    """Coerce one event or a list into validated events carrying id and ts."""
    if isinstance(events, (Event, dict)):
        events = [events]
    prepared = []
    for item in events:
        try:
            event = item if isinstance(item, Event) else Event.model_validate(item)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid event: {e.errors()[0]['msg']}") from e
        prepared.append(event.with_identity())
    return prepared


class EventBus(ABC):
    """Producer side of the event bus. Never waits for job completion."""

    @abstractmethod
    async def send(self, events: Union[EventInput, Iterable[EventInput]]) -> SendReceipt:
        ...

    async def close(self) -> None:
        return None


class HttpEventBus(EventBus):
    """Posts events to the broker's ingest URL.

    One AsyncClient is shared by all callers, so concurrent sends are safe.
    """

    def __init__(
        self,
        url: str,
        signing_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url
        self._signing_key = signing_key
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, events):
        prepared = prepare_events(events)
        if not prepared:
            return SendReceipt()

        body = json.dumps([e.to_wire() for e in prepared]).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self._signing_key:
            headers[SIGNATURE_HEADER] = sign(self._signing_key, body)

        try:
            response = await self._client.post(self._url, content=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(
                "event_delivery_failed",
                status_code=status,
                events=[ev.name for ev in prepared],
            )
            raise DeliveryError(
                f"Broker rejected events with status {status}", status_code=status
            ) from e
        except httpx.RequestError as e:
            logger.warning(
                "event_delivery_failed",
                error=str(e),
                events=[ev.name for ev in prepared],
            )
            raise DeliveryError(f"Broker unreachable: {e}") from e

        ids = [ev.id for ev in prepared]
        logger.info("events_sent", count=len(ids), names=[ev.name for ev in prepared])
        return SendReceipt(ids=ids)

    async def close(self) -> None:
        await self._client.aclose()


class LocalEventBus(EventBus):
    """Feeds events straight into an in-process engine."""

    def __init__(self, engine: "JobEngine"):
        self._engine = engine

    async def send(self, events):
        prepared = prepare_events(events)
        result = await self._engine.ingest(prepared)
        return SendReceipt(ids=[ev.id for ev in prepared if ev.id in result.accepted])
