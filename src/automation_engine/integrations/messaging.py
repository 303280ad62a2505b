"""
Outbound message dispatch
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional
from uuid import uuid4

import httpx

from ..exceptions import DispatchFatalError, DispatchRetriableError


logger = logging.getLogger(__name__)

DEFAULT_WHATSAPP_API_BASE = "https://graph.facebook.com/v18.0"


@dataclass(frozen=True)
class OutboundMessage:
    """A rendered message ready for a transport"""
    channel: str
    recipient: str
    body: str
    credentials: Dict[str, str] = field(default_factory=dict)
    subject: Optional[str] = None
    run_id: Optional[str] = None
    node: Optional[str] = None


@dataclass(frozen=True)
class DispatchReceipt:
    """Transport acknowledgement of a sent message"""
    message_id: str
    channel: str


class MessageDispatcher(ABC):
    """
    Sends one message.

    Implementations raise DispatchRetriableError for transient failures and
    DispatchFatalError for failures that a retry cannot fix.
    """

    @abstractmethod
    async def send(self, message: OutboundMessage) -> DispatchReceipt:
        pass

    async def close(self):
        """Release transport resources"""
        pass


class RecordingMessageDispatcher(MessageDispatcher):
    """In-memory transport that keeps every sent message"""

    def __init__(self):
        self.sent: List[OutboundMessage] = []
        self.attempts = 0
        self._failures: Deque[Exception] = deque()
        self._lock = asyncio.Lock()

    def fail_next(self, *errors: Exception):
        """Queue errors raised by the next send attempts, one per attempt"""
        self._failures.extend(errors)

    async def send(self, message: OutboundMessage) -> DispatchReceipt:
        async with self._lock:
            self.attempts += 1
            if self._failures:
                raise self._failures.popleft()
            self.sent.append(message)

        receipt = DispatchReceipt(message_id=f"rec-{uuid4().hex[:12]}", channel=message.channel)
        logger.info(f"Recorded {message.channel} message to {message.recipient} ({receipt.message_id})")
        return receipt

    def sent_to(self, recipient: str) -> List[OutboundMessage]:
        return [message for message in self.sent if message.recipient == recipient]

    def clear(self):
        self.sent.clear()
        self._failures.clear()
        self.attempts = 0


class WhatsAppMessageDispatcher(MessageDispatcher):
    """Text messages through the WhatsApp Cloud API"""

    def __init__(
        self,
        phone_number_id: Optional[str] = None,
        access_token: Optional[str] = None,
        api_base: str = DEFAULT_WHATSAPP_API_BASE,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.api_base = api_base.rstrip('/')
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5.0, read=timeout, write=5.0, pool=5.0)
        )

    async def send(self, message: OutboundMessage) -> DispatchReceipt:
        # credentials from the triggering account take precedence over the configured ones
        phone_number_id = message.credentials.get("phone_number_id") or self.phone_number_id
        access_token = message.credentials.get("access_token") or self.access_token
        if not phone_number_id or not access_token:
            raise DispatchFatalError("WhatsApp phone number id and access token are required")

        url = f"{self.api_base}/{phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": message.recipient,
            "type": "text",
            "text": {"body": message.body},
        }
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise DispatchRetriableError(f"WhatsApp request failed: {e}") from e

        if response.status_code == 429:
            raise DispatchRetriableError("WhatsApp rate limit exceeded")
        if response.status_code >= 500:
            raise DispatchRetriableError(f"WhatsApp server error {response.status_code}")
        if response.status_code >= 400:
            raise DispatchFatalError(f"WhatsApp rejected message ({response.status_code}): {response.text}")

        data = response.json()
        message_id = data.get("messages", [{}])[0].get("id", "")
        logger.info(f"Sent WhatsApp message to {message.recipient} ({message_id})")
        return DispatchReceipt(message_id=message_id, channel=message.channel)

    async def close(self):
        await self._client.aclose()


class ChannelRouter(MessageDispatcher):
    """Routes messages to the dispatcher registered for their channel"""

    def __init__(self, routes: Dict[str, MessageDispatcher] = None):
        self.routes: Dict[str, MessageDispatcher] = dict(routes or {})

    def register(self, channel: str, dispatcher: MessageDispatcher):
        self.routes[channel] = dispatcher

    async def send(self, message: OutboundMessage) -> DispatchReceipt:
        dispatcher = self.routes.get(message.channel)
        if dispatcher is None:
            raise DispatchFatalError(f"No transport configured for channel '{message.channel}'")
        return await dispatcher.send(message)

    async def close(self):
        for dispatcher in {id(d): d for d in self.routes.values()}.values():
            await dispatcher.close()
