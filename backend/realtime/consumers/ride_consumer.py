"""Ride WebSocket consumer: driver position streaming and in-ride chat."""

import logging
from typing import Any, Dict

from channels.db import database_sync_to_async

from accounts.models import User
from services.ride_management import get_orchestrator
from .base import BaseConsumer

logger = logging.getLogger(__name__)


class RideConsumer(BaseConsumer):
    """
    Used by drivers to push ``ride_location_update`` messages while a ride is
    InProgress. The passenger receives ``ride:driver_location`` through
    their own bus groups.

    Both participants may send ``chat_message`` and ``typing``; the other
    participant receives ``chat:receive`` / ``chat:typing``.
    """

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "ride_location_update":
            await self._handle_location_update(data)
        elif msg_type == "chat_message":
            await self._handle_chat_message(data)
        elif msg_type == "typing":
            await self._handle_typing(data)
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    async def _handle_location_update(self, data: Dict[str, Any]):
        if self.role != User.ROLE_DRIVER:
            await self.send_error("Only drivers can send ride location updates")
            return

        ride_id = data.get("ride_id")
        lat = data.get("latitude")
        lon = data.get("longitude")
        if ride_id is None or lat is None or lon is None:
            await self.send_error("ride_location_update requires ride_id, latitude and longitude")
            return

        sequence = await self._append_location(ride_id, lat, lon, data.get("speed"), data.get("heading"))
        await self.send_success("location_recorded", ride_id=ride_id, sequence=sequence)

    async def _handle_chat_message(self, data: Dict[str, Any]):
        ride_id = data.get("ride_id")
        if ride_id is None:
            await self.send_error("chat_message requires ride_id and message")
            return

        delivered = await self._send_chat(ride_id, data.get("message"), data.get("message_type", "text"))
        await self.send_success("chat_sent", ride_id=ride_id, delivered=delivered)

    async def _handle_typing(self, data: Dict[str, Any]):
        ride_id = data.get("ride_id")
        if ride_id is None:
            await self.send_error("typing requires ride_id")
            return
        await self._send_typing(ride_id, bool(data.get("is_typing", True)))

    @database_sync_to_async
    def _append_location(self, ride_id, lat, lon, speed, heading) -> int:
        result = get_orchestrator().update_location(
            self.user, int(ride_id), lat, lon, speed=speed, heading=heading
        )
        return result.extra["sequence"]

    @database_sync_to_async
    def _send_chat(self, ride_id, message, message_type) -> bool:
        return get_orchestrator().send_chat_message(self.user, int(ride_id), message, message_type)

    @database_sync_to_async
    def _send_typing(self, ride_id, is_typing) -> bool:
        return get_orchestrator().send_typing(self.user, int(ride_id), is_typing)
