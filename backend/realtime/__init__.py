"""
Realtime delivery for the dispatch core.

    - bus.py: RealtimeBus, per-user publish/subscribe over the Channels layer
    - geo.py: DriverIndex, the live driver location and availability index
    - events.py: event names carried on the bus
    - notifications.py: payload builders for ride events
    - consumers/: WebSocket endpoints (realtime, driver, ride)
"""
