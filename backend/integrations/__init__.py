"""
Adapters for third-party services: maps, payments, SMS and image storage.

Each adapter is chosen from settings; an unconfigured service is replaced by
a fallback that either degrades (maps, images) or fails with
IntegrationNotConfigured (SMS, payments).
"""

from .exceptions import ExternalServiceError, IntegrationNotConfigured
from .images import ImageStore, PLACEHOLDER_PHOTO_URL, get_image_store
from .maps import Geocoder, GeocodeResult, Router, RouteInfo, get_geocoder, get_router, haversine_route
from .payments import ChargeResult, PaymentGateway, build_payment_gateways, get_payment_gateway
from .sms import SMSGateway, SMSResult, get_sms_gateway

__all__ = [
    "ExternalServiceError",
    "IntegrationNotConfigured",
    "ImageStore",
    "PLACEHOLDER_PHOTO_URL",
    "get_image_store",
    "Geocoder",
    "GeocodeResult",
    "Router",
    "RouteInfo",
    "get_geocoder",
    "get_router",
    "haversine_route",
    "ChargeResult",
    "PaymentGateway",
    "build_payment_gateways",
    "get_payment_gateway",
    "SMSGateway",
    "SMSResult",
    "get_sms_gateway",
]
