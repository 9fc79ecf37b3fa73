"""Alert fanout: live broadcast plus per-recipient offline delivery.

A dispatch never raises. Live subscribers get the event first; then every
recipient is attempted on each applicable outbound channel as its own task,
bounded by a timeout and retried with backoff. The returned outcomes are the
audit trail callers store on the owning record before committing it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app.core.errors import DeliveryError
from app.core.session_registry import ChannelKind, SessionRegistry, channel_name
from app.models.journey import Journey
from app.models.user import User
from app.services.notification_service import NotificationChannel, NotificationPayload, Notifier, Recipient

logger = logging.getLogger(__name__)


@dataclass
class FanoutEvent:
    """One event to fan out.

    ``live_event`` is the WebSocket event name (journey:update, safety:alert,
    sos:alert); ``type`` is the specific kind carried in the payload.
    """

    live_event: str
    type: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    severity: str = "low"
    call: bool = False
    notify_offline: bool = True

    def live_payload(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message, "severity": self.severity, **self.data}

    def notification(self) -> NotificationPayload:
        data = {"type": self.type, "severity": self.severity}
        for key in ("journeyId", "alertId", "emergencyId", "audioUrl"):
            if self.data.get(key) not in (None, ""):
                data[key] = str(self.data[key])
        return NotificationPayload(title=self.title, body=self.message, data=data, call=self.call)


@dataclass
class DeliveryOutcome:
    parent_id: int
    delivered: bool
    channels: list[str]
    error: str | None
    notified_at: datetime

    def as_record(self) -> dict[str, Any]:
        return {
            "parentId": self.parent_id,
            "delivered": self.delivered,
            "channels": self.channels,
            "error": self.error,
            "notifiedAt": self.notified_at.isoformat(),
        }


def resolve_recipients(user: User, journey: Journey | None = None) -> list[User]:
    """Journey share list if it has one, else every parent linked to the user.

    A share list never reaches past the user's current links.
    """
    parents = user.parents
    if journey is not None and journey.shared_with:
        linked = {p.id for p in parents}
        parents = [p for p in journey.shared_with if p.id in linked]
    seen: set[int] = set()
    out: list[User] = []
    for p in parents:
        if p.id not in seen and p.is_active:
            seen.add(p.id)
            out.append(p)
    return out


def live_channels(user_id: int, journey_id: int | None = None) -> list[str]:
    channels = [channel_name(ChannelKind.WATCHERS, user_id)]
    if journey_id is not None:
        channels.append(channel_name(ChannelKind.JOURNEY, journey_id))
    return channels


class AlertFanoutDispatcher:
    """Delivers events to live subscribers and to each recipient's outbound channels."""

    def __init__(
        self,
        registry: SessionRegistry,
        notifier: Notifier,
        *,
        timeout_seconds: float = 10.0,
        retries: int = 1,
        backoff_seconds: float = 0.5,
    ) -> None:
        self.registry = registry
        self.notifier = notifier
        self.timeout_seconds = timeout_seconds
        self.retries = max(0, retries)
        self.backoff_seconds = backoff_seconds

    async def broadcast(self, live_event: str, data: dict[str, Any], *, user_id: int, journey_id: int | None = None) -> int:
        """Live-only delivery. Returns the number of connections reached."""
        try:
            return await self.registry.publish_many(live_channels(user_id, journey_id), live_event, data)
        except Exception:
            logger.exception("live_broadcast_failed event=%s user_id=%s", live_event, user_id)
            return 0

    async def dispatch(self, event: FanoutEvent, *, user: User, journey: Journey | None = None) -> list[DeliveryOutcome]:
        journey_id = journey.id if journey is not None else None
        try:
            # Relationship loads hit the database; keep them off the event loop
            parents = await asyncio.to_thread(resolve_recipients, user, journey)
            recipients = [Recipient.from_user(p) for p in parents]
        except Exception:
            logger.exception("fanout_recipient_resolution_failed user_id=%s journey_id=%s", user.id, journey_id)
            recipients = []

        reached = await self.broadcast(event.live_event, event.live_payload(), user_id=user.id, journey_id=journey_id)

        if not event.notify_offline or not recipients:
            logger.info(
                "fanout type=%s user_id=%s journey_id=%s live=%s recipients=0",
                event.type,
                user.id,
                journey_id,
                reached,
            )
            return []

        payload = event.notification()
        results = await asyncio.gather(
            *(self._deliver(r, payload) for r in recipients),
            return_exceptions=True,
        )
        outcomes: list[DeliveryOutcome] = []
        for recipient, result in zip(recipients, results):
            if isinstance(result, BaseException):
                logger.error("fanout_delivery_crashed parent_id=%s error=%r", recipient.id, result)
                outcomes.append(
                    DeliveryOutcome(recipient.id, False, [], repr(result), datetime.now(timezone.utc))
                )
            else:
                outcomes.append(result)

        logger.info(
            "fanout type=%s user_id=%s journey_id=%s live=%s delivered=%s/%s",
            event.type,
            user.id,
            journey_id,
            reached,
            sum(1 for o in outcomes if o.delivered),
            len(outcomes),
        )
        return outcomes

    async def _deliver(self, recipient: Recipient, payload: NotificationPayload) -> DeliveryOutcome:
        notified_at = datetime.now(timezone.utc)
        channels = self.notifier.channels_for(recipient, payload)
        if not channels:
            return DeliveryOutcome(recipient.id, False, [], "no delivery channel available", notified_at)

        results = await asyncio.gather(
            *(self._attempt(ch, recipient, payload) for ch in channels),
            return_exceptions=True,
        )
        succeeded: list[str] = []
        errors: list[str] = []
        for channel, result in zip(channels, results):
            if isinstance(result, BaseException):
                logger.warning("delivery_failed parent_id=%s channel=%s error=%s", recipient.id, channel.name, result)
                errors.append(str(result))
            else:
                succeeded.append(channel.name)
        return DeliveryOutcome(
            parent_id=recipient.id,
            delivered=bool(succeeded),
            channels=succeeded,
            error="; ".join(errors) or None,
            notified_at=notified_at,
        )

    async def _attempt(self, channel: NotificationChannel, recipient: Recipient, payload: NotificationPayload) -> None:
        attempt = 0
        while True:
            try:
                await asyncio.wait_for(channel.send(recipient, payload), timeout=self.timeout_seconds)
                return
            except asyncio.TimeoutError:
                error = DeliveryError(channel.name, f"timed out after {self.timeout_seconds}s")
            except DeliveryError as exc:
                error = exc
            except Exception as exc:  # noqa: BLE001 - one channel must not break the dispatch
                error = DeliveryError(channel.name, repr(exc))
            if attempt >= self.retries:
                raise error
            await asyncio.sleep(self.backoff_seconds * (2 ** attempt))
            attempt += 1
