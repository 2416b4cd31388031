"""Driver WebSocket consumer: idle location reports and availability."""

import logging
from typing import Any, Dict

from channels.db import database_sync_to_async

from accounts.models import User
from drivers.services import update_driver_location, update_driver_status
from realtime.geo import get_driver_index
from .base import BaseConsumer

logger = logging.getLogger(__name__)


class DriverConsumer(BaseConsumer):
    """
    WebSocket consumer for drivers.

    Handles:
        - driver_location_update: idle position into the DriverIndex
        - driver_status_update: available / offline toggle
    Ride offers and cancellations arrive through the bus groups joined in
    BaseConsumer.
    """

    allowed_roles = (User.ROLE_DRIVER,)

    async def on_connect(self):
        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
            "message": "Driver connected successfully",
        })

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "driver_location_update":
            await self._handle_location_update(data)
        elif msg_type == "driver_status_update":
            await self._handle_status_update(data)
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Message Handlers ----------------------

    async def _handle_location_update(self, data: Dict[str, Any]):
        lat = data.get("latitude")
        lon = data.get("longitude")
        if lat is None or lon is None:
            await self.send_error("driver_location_update requires latitude and longitude")
            return

        accepted = await self._record_location(lat, lon)
        logger.debug("driver ws location driver_id=%s accepted=%s", self.user_id, accepted)
        await self.send_success("location_updated", accepted=accepted)

    async def _handle_status_update(self, data: Dict[str, Any]):
        status = data.get("status")
        profile = await self._set_status(status)
        await self.send_success("status_updated", status=profile.status)

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _record_location(self, lat, lon) -> bool:
        return update_driver_location(self.user, lat, lon, get_driver_index())

    @database_sync_to_async
    def _set_status(self, status):
        return update_driver_status(self.user, status, get_driver_index())
