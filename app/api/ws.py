"""WebSocket endpoint with JWT auth.

Client connects with ``/ws?token=<jwt>`` and exchanges JSON frames
``{"event": ..., "data": {...}}``.

client -> server: register_socket, parent:watch, parent:unwatch, journey:join,
journey:leave, location:update, sos:send, ping
server -> client: journey:update, safety:alert, location:update, sos:alert,
plus an ack or ``error`` frame for each client event
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.core.deps import get_dispatcher, get_journey_locks, get_session_registry, user_from_token
from app.core.errors import AuthorizationError, DomainError, ValidationError
from app.core.ordering import KeyedLocks
from app.core.session_registry import ChannelKind, SessionRegistry, channel_name, encode_event
from app.db.session import get_db
from app.models.journey import Journey
from app.models.user import User
from app.schemas.geo import LocationIn
from app.schemas.journey import LocationSampleIn
from app.services import journey_service, link_service
from app.services.fanout_service import AlertFanoutDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()


def _int_field(data: dict[str, Any], *names: str) -> int:
    for name in names:
        if data.get(name) is not None:
            try:
                return int(data[name])
            except (TypeError, ValueError):
                break
    raise ValidationError(f"{names[0]} is required")


class LiveSession:
    """Handles the frames of one authenticated connection."""

    def __init__(
        self,
        websocket: WebSocket,
        user: User,
        db: Session,
        registry: SessionRegistry,
        dispatcher: AlertFanoutDispatcher,
        locks: KeyedLocks,
    ) -> None:
        self.websocket = websocket
        self.user = user
        self.db = db
        self.registry = registry
        self.dispatcher = dispatcher
        self.locks = locks

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_text(encode_event(event, data))

    def _reload(self) -> None:
        self.db.expire_all()
        self.db.refresh(self.user)

    async def handle(self, raw: str) -> None:
        if raw == "ping":
            await self.send("pong", {})
            return
        try:
            frame = json.loads(raw)
        except ValueError:
            await self.send("error", {"message": "Frames must be JSON"})
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await self.send("error", {"message": "Frames need an event name"})
            return
        event = frame["event"]
        data = frame.get("data") or {}

        handler = self.HANDLERS.get(event)
        if handler is None:
            await self.send("error", {"event": event, "message": f"Unknown event {event}"})
            return

        # The session outlives single requests; read fresh state per frame
        await asyncio.to_thread(self._reload)
        try:
            await handler(self, data)
        except DomainError as exc:
            await self.send("error", {"event": event, "message": exc.message})
        except PydanticValidationError as exc:
            await self.send("error", {"event": event, "message": "Invalid payload", "errors": exc.errors(include_url=False)})

    async def register_socket(self, data: dict[str, Any]) -> None:
        claimed = data.get("userId")
        if claimed is not None and str(claimed) != str(self.user.id):
            raise AuthorizationError("userId does not match the token")
        channel = channel_name(ChannelKind.USER, self.user.id)
        self.registry.subscribe(channel, self.websocket)
        await self.send("registered", {"userId": self.user.id, "channel": channel})

    def _watch_channel(self, data: dict[str, Any]) -> str:
        child_id = _int_field(data, "childId", "userId")
        if not self.user.is_parent or child_id not in {c.id for c in self.user.children}:
            raise AuthorizationError("Not linked to this user")
        return channel_name(ChannelKind.WATCHERS, child_id)

    async def parent_watch(self, data: dict[str, Any]) -> None:
        channel = await asyncio.to_thread(self._watch_channel, data)
        self.registry.subscribe(channel, self.websocket)
        await self.send("parent:watching", {"channel": channel})

    async def parent_unwatch(self, data: dict[str, Any]) -> None:
        channel = await asyncio.to_thread(self._watch_channel, data)
        self.registry.unsubscribe(channel, self.websocket)
        await self.send("parent:unwatched", {"channel": channel})

    def _viewable_journey(self, data: dict[str, Any]) -> Journey:
        journey = journey_service.get_journey(self.db, _int_field(data, "journeyId"))
        journey_service.ensure_can_view(journey, self.user)
        return journey

    async def journey_join(self, data: dict[str, Any]) -> None:
        journey = await asyncio.to_thread(self._viewable_journey, data)
        channel = channel_name(ChannelKind.JOURNEY, journey.id)
        self.registry.subscribe(channel, self.websocket)
        await self.send("journey:joined", {"journeyId": journey.id, "status": journey.status})

    async def journey_leave(self, data: dict[str, Any]) -> None:
        journey_id = _int_field(data, "journeyId")
        self.registry.unsubscribe(channel_name(ChannelKind.JOURNEY, journey_id), self.websocket)
        await self.send("journey:left", {"journeyId": journey_id})

    async def location_update(self, data: dict[str, Any]) -> None:
        """Feed the in-progress journey if there is one, else just the last known location."""
        sample = LocationSampleIn.model_validate(data)
        if self.user.is_parent:
            raise AuthorizationError("Only users share their location")
        journey = await asyncio.to_thread(journey_service.find_in_progress, self.db, self.user.id)
        if journey is None:
            await asyncio.to_thread(
                link_service.update_last_location, self.db, self.user, sample.to_point(), sample.timestamp
            )
            await self.dispatcher.broadcast(
                "location:update",
                {
                    "userId": self.user.id,
                    "journeyId": None,
                    "lat": sample.lat,
                    "lng": sample.lng,
                    "speed": sample.speed,
                    "batteryLevel": sample.battery_level,
                    "timestamp": self.user.last_location_at.isoformat(),
                },
                user_id=self.user.id,
            )
            await self.send("location:ack", {"journeyId": None})
            return

        async with self.locks.hold(journey.id):
            journey, progress, raised = await journey_service.record_location(
                self.db, self.dispatcher, journey.id, self.user, sample
            )
        await self.send(
            "location:ack",
            {"journeyId": journey.id, "progress": progress, "journeyStatus": journey.status, "alerts": [a.id for a in raised]},
        )

    async def sos_send(self, data: dict[str, Any]) -> None:
        location = LocationIn.model_validate(data.get("location") or data)
        journey_id = data.get("journeyId")
        action = data.get("action") or "sos_call"
        if journey_id is None:
            emergency, journey = await journey_service.trigger_emergency(
                self.db,
                self.dispatcher,
                self.user,
                action,
                location.to_point(),
                audio_url=data.get("audioUrl"),
                message=data.get("message"),
            )
        else:
            journey_id = _int_field(data, "journeyId")
            async with self.locks.hold(journey_id):
                emergency, journey = await journey_service.trigger_emergency(
                    self.db,
                    self.dispatcher,
                    self.user,
                    action,
                    location.to_point(),
                    journey_id=journey_id,
                    audio_url=data.get("audioUrl"),
                    message=data.get("message"),
                )
        await self.send(
            "sos:sent",
            {
                "emergencyId": emergency.id,
                "journeyId": emergency.journey_id,
                "journeyStatus": journey.status if journey else None,
                "notified": sum(1 for n in emergency.notified_parents if n.get("delivered")),
            },
        )

    async def ping(self, data: dict[str, Any]) -> None:
        await self.send("pong", {})

    HANDLERS = {
        "register_socket": register_socket,
        "parent:watch": parent_watch,
        "parent:unwatch": parent_unwatch,
        "journey:join": journey_join,
        "journey:leave": journey_leave,
        "location:update": location_update,
        "sos:send": sos_send,
        "ping": ping,
    }


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    db: Session = Depends(get_db),
    registry: SessionRegistry = Depends(get_session_registry),
    dispatcher: AlertFanoutDispatcher = Depends(get_dispatcher),
    locks: KeyedLocks = Depends(get_journey_locks),
):
    """WebSocket endpoint. Client connects with ?token=<jwt>."""
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Missing token")
        return

    user = await asyncio.to_thread(user_from_token, db, token)
    if user is None:
        await websocket.close(code=4003, reason="Invalid or expired token")
        return

    await websocket.accept()
    registry.subscribe(channel_name(ChannelKind.USER, user.id), websocket)
    logger.info("ws_connected user_id=%s (total=%s)", user.id, registry.total_connections)
    session = LiveSession(websocket, user, db, registry, dispatcher, locks)
    try:
        while True:
            raw = await websocket.receive_text()
            await session.handle(raw)
    except WebSocketDisconnect:
        pass
    finally:
        registry.remove_connection(websocket)
        logger.info("ws_disconnected user_id=%s (total=%s)", user.id, registry.total_connections)
