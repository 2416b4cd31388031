"""Outbound SMS through the Twilio REST API."""

import logging
from dataclasses import dataclass

from django.conf import settings

from .exceptions import ExternalServiceError, IntegrationNotConfigured
from .http import request_json, warn_degraded

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


@dataclass(frozen=True)
class SMSResult:
    sid: str
    status: str


class SMSGateway:
    def send(self, to: str, body: str) -> SMSResult:
        raise NotImplementedError


class TwilioSMSGateway(SMSGateway):
    service = "twilio"

    def __init__(self, account_sid: str, auth_token: str, from_number: str):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    def send(self, to: str, body: str) -> SMSResult:
        logger.info("sending sms to=%s", to)
        try:
            data = request_json(
                self.service, "POST", TWILIO_MESSAGES_URL.format(sid=self.account_sid),
                data={"From": self.from_number, "To": to, "Body": body},
                auth=(self.account_sid, self.auth_token),
            )
        except ExternalServiceError:
            logger.error("twilio sms failed to=%s from=%s", to, self.from_number)
            raise
        return SMSResult(sid=data.get("sid", ""), status=data.get("status", "queued"))


class UnconfiguredSMSGateway(SMSGateway):
    def send(self, to: str, body: str) -> SMSResult:
        raise IntegrationNotConfigured("SMS is not configured", service="twilio")


def get_sms_gateway() -> SMSGateway:
    twilio = getattr(settings, "TWILIO", {}) or {}
    if twilio.get("ACCOUNT_SID") and twilio.get("AUTH_TOKEN") and twilio.get("PHONE_NUMBER"):
        return TwilioSMSGateway(twilio["ACCOUNT_SID"], twilio["AUTH_TOKEN"], twilio["PHONE_NUMBER"])
    warn_degraded("sms", "delivery recorded as failed")
    return UnconfiguredSMSGateway()
