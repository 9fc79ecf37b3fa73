"""Outbound notification channels: FCM push, Twilio SMS and Twilio voice.

Each channel sends to one recipient and raises ``DeliveryError`` on failure.
Channels without credentials are left out of the notifier entirely.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol
from xml.sax.saxutils import escape

import httpx

from app.core.config import Settings
from app.core.errors import DeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    """Snapshot of a parent's contact details, safe to use outside the DB session."""

    id: int
    full_name: str
    phone: str | None = None
    device_tokens: tuple[str, ...] = ()

    @classmethod
    def from_user(cls, user: Any) -> "Recipient":
        return cls(
            id=user.id,
            full_name=user.full_name,
            phone=user.phone,
            device_tokens=tuple(user.device_tokens or ()),
        )


@dataclass
class NotificationPayload:
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)
    call: bool = False  # also place a voice call (emergencies)


class NotificationChannel(Protocol):
    name: str

    def applies_to(self, recipient: Recipient, payload: NotificationPayload) -> bool: ...

    async def send(self, recipient: Recipient, payload: NotificationPayload) -> None: ...


class PushChannel:
    """Firebase Cloud Messaging multicast to every registered device of a recipient."""

    name = "push"

    def __init__(self, credentials_path: str, app_name: str = "safepath") -> None:
        import firebase_admin
        from firebase_admin import credentials

        cred = credentials.Certificate(credentials_path)
        try:
            self._app = firebase_admin.get_app(app_name)
        except ValueError:
            self._app = firebase_admin.initialize_app(cred, name=app_name)

    def applies_to(self, recipient: Recipient, payload: NotificationPayload) -> bool:
        return bool(recipient.device_tokens)

    async def send(self, recipient: Recipient, payload: NotificationPayload) -> None:
        from firebase_admin import messaging

        message = messaging.MulticastMessage(
            tokens=list(recipient.device_tokens),
            notification=messaging.Notification(title=payload.title, body=payload.body),
            data=payload.data,
        )
        try:
            response = await asyncio.to_thread(messaging.send_each_for_multicast, message, app=self._app)
        except Exception as exc:
            raise DeliveryError(self.name, str(exc)) from exc
        if response.success_count == 0:
            raise DeliveryError(self.name, f"all {response.failure_count} device(s) rejected the message")
        if response.failure_count:
            logger.warning(
                "push_partial_failure parent_id=%s success=%s failure=%s",
                recipient.id,
                response.success_count,
                response.failure_count,
            )


class _TwilioChannel:
    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._sid = settings.twilio_account_sid
        self._token = settings.twilio_auth_token
        self._from = settings.twilio_from_number
        self._base = settings.twilio_base_url.rstrip("/")

    async def _post(self, resource: str, form: dict[str, str]) -> dict[str, Any]:
        url = f"{self._base}/Accounts/{self._sid}/{resource}.json"
        try:
            response = await self._client.post(url, data=form, auth=(self._sid, self._token))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DeliveryError(self.name, f"Twilio request failed: {exc}") from exc
        return response.json()


class SmsChannel(_TwilioChannel):
    name = "sms"

    def applies_to(self, recipient: Recipient, payload: NotificationPayload) -> bool:
        return bool(recipient.phone)

    async def send(self, recipient: Recipient, payload: NotificationPayload) -> None:
        await self._post("Messages", {"From": self._from, "To": recipient.phone or "", "Body": payload.body})


class VoiceChannel(_TwilioChannel):
    name = "voice"

    def applies_to(self, recipient: Recipient, payload: NotificationPayload) -> bool:
        return payload.call and bool(recipient.phone)

    async def send(self, recipient: Recipient, payload: NotificationPayload) -> None:
        twiml = f"<Response><Say>{escape(payload.body)}</Say></Response>"
        await self._post("Calls", {"From": self._from, "To": recipient.phone or "", "Twiml": twiml})


class Notifier:
    """The set of enabled outbound channels."""

    def __init__(self, channels: list[NotificationChannel] | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.channels: list[NotificationChannel] = list(channels or [])
        self._client = client

    def channels_for(self, recipient: Recipient, payload: NotificationPayload) -> list[NotificationChannel]:
        return [ch for ch in self.channels if ch.applies_to(recipient, payload)]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def build_notifier(settings: Settings) -> Notifier:
    """Create the notifier from settings, enabling only configured channels."""
    channels: list[NotificationChannel] = []
    client: httpx.AsyncClient | None = None

    if settings.firebase_credentials_path:
        try:
            channels.append(PushChannel(settings.firebase_credentials_path, settings.app_name))
        except Exception:
            logger.exception("push_channel_init_failed path=%s", settings.firebase_credentials_path)
    else:
        logger.info("FIREBASE_CREDENTIALS_PATH not set; push notifications disabled")

    if settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from_number:
        client = httpx.AsyncClient(timeout=settings.notification_timeout_seconds)
        channels.append(SmsChannel(client, settings))
        channels.append(VoiceChannel(client, settings))
    else:
        logger.info("Twilio credentials not set; SMS and voice disabled")

    return Notifier(channels, client)
