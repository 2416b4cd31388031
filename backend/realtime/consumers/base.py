"""Base WebSocket consumer with shared functionality for all consumers."""

import logging
from typing import Any, Dict, Set

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from common.exceptions import ServiceError
from realtime.bus import BROADCAST_GROUP, role_group, user_group

logger = logging.getLogger(__name__)


class BaseConsumer(AsyncJsonWebsocketConsumer):
    """
    Base consumer with shared connection management and helper methods.

    Every connection joins ``user_<id>``, ``role_<role>`` and ``broadcast``,
    so whatever the RealtimeBus publishes for this user reaches the socket.

    Subclasses may override:
        - allowed_roles: roles accepted on this endpoint (empty = any)
        - on_connect(): extra setup after the socket is accepted
        - handle_message(msg_type, data): handle incoming messages
    """

    allowed_roles: tuple = ()

    async def connect(self):
        self.user = self.scope.get("user")

        if self.user is None or self.user.is_anonymous:
            await self.close(code=4401)
            return

        self.user_id = self.user.id
        self.role = getattr(self.user, "role", None)

        if self.allowed_roles and self.role not in self.allowed_roles:
            await self.close(code=4403)
            return

        # Track joined groups for cleanup
        self.joined_groups: Set[str] = set()
        await self._join_group(user_group(self.user_id))
        if self.role:
            await self._join_group(role_group(self.role))
        await self._join_group(BROADCAST_GROUP)

        await self.accept()
        await self.on_connect()

    async def on_connect(self):
        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
        })

    async def disconnect(self, close_code):
        """Leave all joined groups on disconnect."""
        for group in list(getattr(self, "joined_groups", ())):
            await self._leave_group(group)
        await self.on_disconnect(close_code)

    async def on_disconnect(self, close_code):
        pass

    async def receive_json(self, data: Dict[str, Any], **kwargs):
        """Route incoming messages to appropriate handlers."""
        msg_type = data.get("type") if isinstance(data, dict) else None
        if not msg_type:
            await self.send_error("Message type is required")
            return

        try:
            await self.handle_message(msg_type, data)
        except ServiceError as exc:
            await self.send_error(exc.message, errors=exc.as_errors())
        except Exception:
            logger.exception("ws message failed type=%s user_id=%s", msg_type, self.user_id)
            await self.send_error(f"Error processing {msg_type}")

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Group Management Helpers ----------------------

    async def _join_group(self, group_name: str):
        await self.channel_layer.group_add(group_name, self.channel_name)
        self.joined_groups.add(group_name)

    async def _leave_group(self, group_name: str):
        await self.channel_layer.group_discard(group_name, self.channel_name)
        self.joined_groups.discard(group_name)

    # ---------------------- Response Helpers ----------------------

    async def send_error(self, message: str, errors: Dict[str, Any] = None):
        body = {"type": "error", "message": message}
        if errors:
            body["errors"] = errors
        await self.send_json(body)

    async def send_success(self, event_type: str, **kwargs):
        await self.send_json({"type": event_type, **kwargs})

    # ---------------------- Bus Event Handler ----------------------

    async def realtime_event(self, event):
        """Forward a RealtimeBus event (``ride:accepted``, ``sos:alert``, ...) to the client."""
        await self.send_json({
            "type": event["event"],
            "payload": event.get("payload", {}),
            "sentAt": event.get("sent_at"),
        })
