"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - pricing: Trip fares and cancellation fees (pure)
    - matching: Driver scoring and offer dispatch
    - ride_management: Ride state machine and lifecycle orchestration
    - safety: SOS alerts
"""
