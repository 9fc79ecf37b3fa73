"""Live-channel subscription registry.

Maps channel names to the WebSocket connections subscribed to them. One
instance is created in the application lifespan and handed to whoever needs to
publish; nothing here is persisted, so clients re-subscribe after reconnecting.
"""

from __future__ import annotations

import enum
import json
import logging
from typing import Any, Iterable, Protocol

logger = logging.getLogger(__name__)


class LiveConnection(Protocol):
    async def send_text(self, data: str) -> None: ...


class ChannelKind(str, enum.Enum):
    USER = "user"  # personal channel of any account
    WATCHERS = "watchers"  # parents watching a tracked user
    JOURNEY = "journey"  # everyone following one journey


def channel_name(kind: ChannelKind, ident: int | str) -> str:
    """Deterministic channel name shared by the HTTP and WebSocket paths."""
    return f"{ChannelKind(kind).value}:{ident}"


def encode_event(event: str, data: Any) -> str:
    return json.dumps({"event": event, "data": data}, default=str)


class SessionRegistry:
    """Tracks which live connections are subscribed to which channels."""

    def __init__(self) -> None:
        # channel -> connections
        self._channels: dict[str, set[LiveConnection]] = {}
        # connection -> channels, so a disconnect can release everything
        self._memberships: dict[LiveConnection, set[str]] = {}

    def subscribe(self, channel: str, connection: LiveConnection) -> None:
        self._channels.setdefault(channel, set()).add(connection)
        self._memberships.setdefault(connection, set()).add(channel)
        logger.debug("live_subscribe channel=%s (subscribers=%s)", channel, len(self._channels[channel]))

    def unsubscribe(self, channel: str, connection: LiveConnection) -> None:
        conns = self._channels.get(channel)
        if conns:
            conns.discard(connection)
            if not conns:
                del self._channels[channel]
        channels = self._memberships.get(connection)
        if channels:
            channels.discard(channel)
            if not channels:
                del self._memberships[connection]

    def remove_connection(self, connection: LiveConnection) -> list[str]:
        """Drop a connection from every channel it joined. Returns those channels."""
        channels = sorted(self._memberships.pop(connection, set()))
        for channel in channels:
            conns = self._channels.get(channel)
            if conns:
                conns.discard(connection)
                if not conns:
                    del self._channels[channel]
        if channels:
            logger.info("live_connection_removed channels=%s (total=%s)", len(channels), self.total_connections)
        return channels

    def revoke(self, user_id: int, channels: Iterable[str]) -> int:
        """Unsubscribe every connection of one account from the given channels."""
        removed = 0
        wanted = set(channels)
        for conn in self.subscribers(channel_name(ChannelKind.USER, user_id)):
            for channel in wanted & self.channels_of(conn):
                self.unsubscribe(channel, conn)
                removed += 1
        if removed:
            logger.info("live_revoked user_id=%s subscriptions=%s", user_id, removed)
        return removed

    def subscribers(self, channel: str) -> set[LiveConnection]:
        return set(self._channels.get(channel, set()))

    def channels_of(self, connection: LiveConnection) -> set[str]:
        return set(self._memberships.get(connection, set()))

    async def publish(self, channel: str, event: str, data: Any) -> int:
        """Send event to every subscriber of a channel. No-op without subscribers."""
        return await self.publish_many([channel], event, data)

    async def publish_many(self, channels: Iterable[str], event: str, data: Any) -> int:
        """Send event once to each connection subscribed to any of the channels.

        Returns the number of connections the event was written to. Connections
        whose send fails are treated as dead and removed.
        """
        targets: set[LiveConnection] = set()
        for channel in channels:
            targets |= self._channels.get(channel, set())
        if not targets:
            return 0

        payload = encode_event(event, data)
        delivered = 0
        dead: list[LiveConnection] = []
        for conn in targets:
            try:
                await conn.send_text(payload)
                delivered += 1
            except Exception:
                dead.append(conn)
        for conn in dead:
            logger.warning("live_send_failed event=%s; dropping connection", event)
            self.remove_connection(conn)
        return delivered

    def clear(self) -> None:
        self._channels.clear()
        self._memberships.clear()

    @property
    def total_connections(self) -> int:
        return len(self._memberships)
