"""
Payment gateways.

Every gateway exposes the same three operations (charge, refund, verify)
so the ride lifecycle never branches on the payment method. Charges are
writes and are never retried here.
"""

import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from django.conf import settings
from django.utils import timezone

from .exceptions import ExternalServiceError, IntegrationNotConfigured
from .http import request_json, warn_degraded

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_REFUNDED = "refunded"

STRIPE_API_URL = "https://api.stripe.com/v1"

# Stripe PaymentIntent status -> our payment status
STRIPE_STATUS_MAP = {
    "succeeded": STATUS_COMPLETED,
    "processing": STATUS_PENDING,
    "requires_payment_method": STATUS_PENDING,
    "requires_confirmation": STATUS_PENDING,
    "requires_action": STATUS_PENDING,
    "requires_capture": STATUS_PENDING,
    "canceled": STATUS_FAILED,
}


@dataclass
class ChargeResult:
    transaction_id: str
    status: str
    details: Dict[str, Any] = field(default_factory=dict)


def _reference(prefix: str, metadata: Optional[dict]) -> str:
    ride_id = (metadata or {}).get("ride_id", "0")
    return f"{prefix}-{ride_id}-{uuid.uuid4().hex[:8].upper()}"


def _gateway_timestamp(moment) -> str:
    return timezone.localtime(moment).strftime("%Y%m%d%H%M%S")


class PaymentGateway:
    method = ""

    def charge(self, amount: Decimal, currency: str, metadata: Optional[dict] = None) -> ChargeResult:
        raise NotImplementedError

    def refund(self, transaction_id: str, amount: Decimal) -> ChargeResult:
        raise NotImplementedError

    def verify(self, transaction_id: str) -> ChargeResult:
        raise NotImplementedError


class CashGateway(PaymentGateway):
    """Cash is collected by the driver; the charge completes immediately."""
    method = "cash"

    def charge(self, amount, currency, metadata=None):
        return ChargeResult(
            transaction_id=_reference("CASH", metadata),
            status=STATUS_COMPLETED,
            details={"amount": str(amount), "currency": currency, "collected_by": "driver"},
        )

    def refund(self, transaction_id, amount):
        return ChargeResult(transaction_id=transaction_id, status=STATUS_REFUNDED, details={"amount": str(amount)})

    def verify(self, transaction_id):
        return ChargeResult(transaction_id=transaction_id, status=STATUS_COMPLETED)


class EasypaisaGateway(PaymentGateway):
    """
    Easypaisa hosted checkout.

    The charge only initiates the payment: the passenger finishes it on the
    Easypaisa page, so the result is pending with a redirect URL.
    """
    method = "easypaisa"
    service = "easypaisa"

    def __init__(self, store_id: str, hash_key: str, base_url: str, return_url: str = ""):
        self.store_id = store_id
        self.hash_key = hash_key
        self.base_url = base_url.rstrip("/")
        self.return_url = return_url

    def secure_hash(self, payload: Dict[str, str]) -> str:
        raw = "".join([
            self.hash_key,
            payload["storeId"],
            payload["orderRefNumber"],
            payload["transactionAmount"],
            payload["transactionType"],
        ])
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def charge(self, amount, currency, metadata=None):
        now = timezone.now()
        order_ref = _reference("EP", metadata)
        payload = {
            "storeId": self.store_id,
            "orderRefNumber": order_ref,
            "transactionAmount": str(amount),
            "transactionType": "MA",
            "postBackURL": self.return_url,
            "transactionDateTime": _gateway_timestamp(now),
            "tokenExpiry": _gateway_timestamp(now + timedelta(days=1)),
        }
        payload["secureHash"] = self.secure_hash(payload)
        payment_url = f"{self.base_url}/easypay-portal?" + urlencode({
            "storeId": payload["storeId"],
            "orderRef": order_ref,
            "amount": payload["transactionAmount"],
            "hash": payload["secureHash"],
        })
        logger.info("easypaisa payment initiated order_ref=%s amount=%s", order_ref, amount)
        return ChargeResult(
            transaction_id=order_ref,
            status=STATUS_PENDING,
            details={"paymentUrl": payment_url, "orderRef": order_ref, "currency": currency},
        )

    def refund(self, transaction_id, amount):
        data = request_json(
            self.service, "POST", f"{self.base_url}/payments/refund",
            json={"storeId": self.store_id, "orderRefNumber": transaction_id, "amount": str(amount)},
            headers={"Authorization": f"Bearer {self.hash_key}"},
        )
        status = STATUS_REFUNDED if data.get("responseCode") == "0000" else STATUS_FAILED
        return ChargeResult(transaction_id=transaction_id, status=status, details=data)

    def verify(self, transaction_id):
        data = request_json(
            self.service, "POST", f"{self.base_url}/payments/verify",
            json={"storeId": self.store_id, "orderRefNumber": transaction_id},
            headers={"Authorization": f"Bearer {self.hash_key}"},
        )
        paid = data.get("transactionStatus") == "PAID"
        return ChargeResult(transaction_id=transaction_id, status=STATUS_COMPLETED if paid else STATUS_PENDING, details=data)


class JazzcashGateway(PaymentGateway):
    """JazzCash hosted checkout (pp_* form post)."""
    method = "jazzcash"
    service = "jazzcash"

    FORM_PATH = "/CustomerPortal/transactionmanagement/merchantform"
    INQUIRY_PATH = "/ApplicationAPI/API/PaymentInquiry/Inquire"
    REFUND_PATH = "/ApplicationAPI/API/Purchase/Refund"

    def __init__(self, merchant_id: str, password: str, integrity_salt: str, base_url: str, return_url: str = ""):
        self.merchant_id = merchant_id
        self.password = password
        self.integrity_salt = integrity_salt
        self.base_url = base_url.rstrip("/")
        self.return_url = return_url

    def secure_hash(self, payload: Dict[str, str]) -> str:
        """HMAC-SHA256 over the salt and the non-empty pp_* values in key order."""
        values = [
            str(payload[key]) for key in sorted(payload)
            if key.startswith("pp") and key != "pp_SecureHash" and payload[key] != ""
        ]
        message = "&".join([self.integrity_salt] + values)
        return hmac.new(
            self.integrity_salt.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
        ).hexdigest().upper()

    def _signed(self, payload: Dict[str, str]) -> Dict[str, str]:
        payload["pp_SecureHash"] = self.secure_hash(payload)
        return payload

    def charge(self, amount, currency, metadata=None):
        now = timezone.now()
        txn_ref = _reference("JC", metadata)
        ride_id = (metadata or {}).get("ride_id", "")
        payload = self._signed({
            "pp_Version": "1.1",
            "pp_TxnType": "MWALLET",
            "pp_MerchantID": self.merchant_id,
            "pp_Password": self.password,
            "pp_TxnRefNo": txn_ref,
            # JazzCash amounts are in paisa
            "pp_Amount": str(int(Decimal(amount) * 100)),
            "pp_TxnCurrency": currency,
            "pp_TxnDateTime": _gateway_timestamp(now),
            "pp_TxnExpiryDateTime": _gateway_timestamp(now + timedelta(days=1)),
            "pp_BillReference": f"ride{ride_id}",
            "pp_Description": f"Ride payment - {ride_id}",
            "pp_ReturnURL": self.return_url,
        })
        logger.info("jazzcash payment initiated txn_ref=%s amount=%s", txn_ref, amount)
        return ChargeResult(
            transaction_id=txn_ref,
            status=STATUS_PENDING,
            details={"paymentUrl": f"{self.base_url}{self.FORM_PATH}", "formFields": payload},
        )

    def refund(self, transaction_id, amount):
        payload = self._signed({
            "pp_MerchantID": self.merchant_id,
            "pp_Password": self.password,
            "pp_TxnRefNo": transaction_id,
            "pp_Amount": str(int(Decimal(amount) * 100)),
            "pp_TxnCurrency": "PKR",
        })
        data = request_json(self.service, "POST", f"{self.base_url}{self.REFUND_PATH}", json=payload)
        status = STATUS_REFUNDED if data.get("pp_ResponseCode") == "000" else STATUS_FAILED
        return ChargeResult(transaction_id=transaction_id, status=status, details=data)

    def verify(self, transaction_id):
        payload = self._signed({
            "pp_MerchantID": self.merchant_id,
            "pp_Password": self.password,
            "pp_TxnRefNo": transaction_id,
        })
        data = request_json(self.service, "POST", f"{self.base_url}{self.INQUIRY_PATH}", json=payload)
        paid = data.get("pp_ResponseCode") == "000" and data.get("pp_Status") == "Completed"
        return ChargeResult(transaction_id=transaction_id, status=STATUS_COMPLETED if paid else STATUS_PENDING, details=data)


class StripeGateway(PaymentGateway):
    """Card payments through Stripe PaymentIntents (REST, form encoded)."""
    method = "card"
    service = "stripe"

    def __init__(self, secret_key: str):
        self.secret_key = secret_key

    def _call(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        return request_json(
            self.service, method, f"{STRIPE_API_URL}{path}",
            data=data, auth=(self.secret_key, ""),
        )

    def charge(self, amount, currency, metadata=None):
        metadata = dict(metadata or {})
        payment_method_id = metadata.pop("payment_method_id", None)
        data = {
            # Stripe expects minor units
            "amount": int(Decimal(amount) * 100),
            "currency": currency.lower(),
            "automatic_payment_methods[enabled]": "true",
            "description": f"Ride payment - {metadata.get('ride_id', '')}",
        }
        if payment_method_id:
            # Saved card: confirm off-session so the intent settles now
            data["payment_method"] = payment_method_id
            data["confirm"] = "true"
            data["off_session"] = "true"
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = str(value)
        intent = self._call("POST", "/payment_intents", data)
        return ChargeResult(
            transaction_id=intent["id"],
            status=STRIPE_STATUS_MAP.get(intent.get("status"), STATUS_PENDING),
            details={"stripeStatus": intent.get("status"), "clientSecret": intent.get("client_secret")},
        )

    def refund(self, transaction_id, amount):
        refund = self._call("POST", "/refunds", {
            "payment_intent": transaction_id,
            "amount": int(Decimal(amount) * 100),
        })
        status = STATUS_REFUNDED if refund.get("status") in ("succeeded", "pending") else STATUS_FAILED
        return ChargeResult(transaction_id=transaction_id, status=status, details={"refundId": refund.get("id")})

    def verify(self, transaction_id):
        intent = self._call("GET", f"/payment_intents/{transaction_id}")
        return ChargeResult(
            transaction_id=transaction_id,
            status=STRIPE_STATUS_MAP.get(intent.get("status"), STATUS_PENDING),
            details={"stripeStatus": intent.get("status")},
        )


class UnconfiguredGateway(PaymentGateway):
    """Placeholder for a payment method whose credentials are missing."""

    def __init__(self, method: str):
        self.method = method

    def _fail(self):
        raise IntegrationNotConfigured(f"{self.method} payments are not configured", service=self.method)

    def charge(self, amount, currency, metadata=None):
        self._fail()

    def refund(self, transaction_id, amount):
        self._fail()

    def verify(self, transaction_id):
        self._fail()


def build_payment_gateways() -> Dict[str, PaymentGateway]:
    """One gateway per payment method, built from settings."""
    return_url = getattr(settings, "PAYMENT_RETURN_URL", "")
    gateways: Dict[str, PaymentGateway] = {"cash": CashGateway()}

    easypaisa = getattr(settings, "EASYPAISA", {}) or {}
    if easypaisa.get("STORE_ID") and easypaisa.get("HASH_KEY"):
        gateways["easypaisa"] = EasypaisaGateway(
            easypaisa["STORE_ID"], easypaisa["HASH_KEY"], easypaisa["BASE_URL"], return_url
        )
    else:
        warn_degraded("easypaisa", "payment marked failed")
        gateways["easypaisa"] = UnconfiguredGateway("easypaisa")

    jazzcash = getattr(settings, "JAZZCASH", {}) or {}
    if jazzcash.get("MERCHANT_ID") and jazzcash.get("PASSWORD") and jazzcash.get("INTEGRITY_SALT"):
        gateways["jazzcash"] = JazzcashGateway(
            jazzcash["MERCHANT_ID"], jazzcash["PASSWORD"], jazzcash["INTEGRITY_SALT"],
            jazzcash["BASE_URL"], return_url,
        )
    else:
        warn_degraded("jazzcash", "payment marked failed")
        gateways["jazzcash"] = UnconfiguredGateway("jazzcash")

    stripe = getattr(settings, "STRIPE", {}) or {}
    if stripe.get("SECRET_KEY"):
        gateways["card"] = StripeGateway(stripe["SECRET_KEY"])
    else:
        warn_degraded("card", "payment marked failed")
        gateways["card"] = UnconfiguredGateway("card")

    return gateways


def get_payment_gateway(method: str, gateways: Optional[Dict[str, PaymentGateway]] = None) -> PaymentGateway:
    gateways = gateways if gateways is not None else build_payment_gateways()
    try:
        return gateways[method]
    except KeyError:
        raise ExternalServiceError(f"Unsupported payment method: {method}", service="payments") from None
