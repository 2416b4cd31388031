"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers import BaseConsumer, DriverConsumer, RideConsumer

websocket_urlpatterns = [
    # Every role: receives bus events for the user, their role and broadcasts
    re_path(r"ws/realtime/$", BaseConsumer.as_asgi(), name="realtime-ws"),
    # Drivers: idle location and availability
    re_path(r"ws/driver/$", DriverConsumer.as_asgi(), name="driver-ws"),
    # Ride tracking while InProgress
    re_path(r"ws/ride/$", RideConsumer.as_asgi(), name="ride-ws"),
]
