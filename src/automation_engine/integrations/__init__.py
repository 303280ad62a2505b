"""Messaging transports and event bus"""

from .event_bus import Event, EventBus
from .messaging import (
    ChannelRouter, DispatchReceipt, MessageDispatcher, OutboundMessage,
    RecordingMessageDispatcher, WhatsAppMessageDispatcher
)

__all__ = [
    "Event",
    "EventBus",
    "ChannelRouter",
    "DispatchReceipt",
    "MessageDispatcher",
    "OutboundMessage",
    "RecordingMessageDispatcher",
    "WhatsAppMessageDispatcher"
]
