"""
RealtimeBus: per-user publish/subscribe over the Channels layer.

Every WebSocket consumer joins ``user_<id>``, ``role_<role>`` and
``broadcast``; the bus addresses those groups. Delivery is best effort.
Publishes to one user are serialized so that user sees events in the
order they were published.
"""

import asyncio
import logging
import threading
from typing import Any, Dict, Iterable, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

logger = logging.getLogger(__name__)

MESSAGE_TYPE = "realtime.event"
BROADCAST_GROUP = "broadcast"
LOCK_STRIPES = 32


def user_group(user_id) -> str:
    return f"user_{user_id}"


def role_group(role: str) -> str:
    return f"role_{role}"


def build_message(event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": MESSAGE_TYPE,
        "event": event_type,
        "payload": payload,
        "sent_at": timezone.now().isoformat(),
    }


class Subscription:
    """
    A synchronous reader on one user's stream.

    WebSocket clients get the same events through their consumer; this is
    for server-side code (and tests) that wants to listen in-process.
    """

    def __init__(self, channel_layer, groups: Iterable[str]):
        self._layer = channel_layer
        self._groups = list(groups)
        self.channel_name = async_to_sync(channel_layer.new_channel)()
        for group in self._groups:
            async_to_sync(channel_layer.group_add)(group, self.channel_name)
        self.closed = False

    def receive(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next event as {"event", "payload"}, or None on timeout."""
        async def _receive():
            return await asyncio.wait_for(self._layer.receive(self.channel_name), timeout)

        try:
            message = async_to_sync(_receive)()
        except asyncio.TimeoutError:
            return None
        return {"event": message["event"], "payload": message["payload"]}

    def close(self) -> None:
        if self.closed:
            return
        for group in self._groups:
            async_to_sync(self._layer.group_discard)(group, self.channel_name)
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class RealtimeBus:
    """Publish dispatch events to users, roles or everyone."""

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    @property
    def channel_layer(self):
        return self._channel_layer or get_channel_layer()

    def _group_send(self, group: str, message: Dict[str, Any]) -> bool:
        channel_layer = self.channel_layer
        if channel_layer is None:
            logger.warning("no channel layer configured; dropped event=%s group=%s", message.get("event"), group)
            return False
        async_to_sync(channel_layer.group_send)(group, message)
        return True

    def _send(self, group: str, event_type: str, payload: Dict[str, Any]) -> bool:
        try:
            return self._group_send(group, build_message(event_type, payload))
        except Exception:
            logger.exception("realtime publish failed event=%s group=%s", event_type, group)
            return False

    def publish(self, user_id, event_type: str, payload: Dict[str, Any]) -> bool:
        """Send ``event_type`` to one user. Returns False if it could not be handed to the layer."""
        if user_id is None:
            return False
        with self._locks[hash(str(user_id)) % LOCK_STRIPES]:
            logger.debug("WS -> user_%s: %s", user_id, event_type)
            return self._send(user_group(user_id), event_type, payload)

    def publish_to_role(self, role: str, event_type: str, payload: Dict[str, Any]) -> bool:
        return self._send(role_group(role), event_type, payload)

    def broadcast(self, event_type: str, payload: Dict[str, Any]) -> bool:
        return self._send(BROADCAST_GROUP, event_type, payload)

    def subscribe(self, user_id) -> Subscription:
        return Subscription(self.channel_layer, [user_group(user_id), BROADCAST_GROUP])


_bus_instance: Optional[RealtimeBus] = None


def get_realtime_bus() -> RealtimeBus:
    """Get the process-wide bus bound to the default channel layer."""
    global _bus_instance
    if _bus_instance is None:
        _bus_instance = RealtimeBus()
    return _bus_instance
