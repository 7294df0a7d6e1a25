"""
auth/sms.py -- Verification code generation and delivery.

Two notifiers share one interface:
  FakeSMSNotifier  -- always generates FAKE_CODE and logs instead of sending.
                      Used in development and tests (SMS_ENABLED=false).
  HttpSMSNotifier  -- POSTs the code to an SMS gateway over HTTPS.

Delivery failures raise NotifierError. The caller decides what that means
for the stored code (the code store keeps it; see auth/codes.py).
"""

from __future__ import annotations

import logging
import secrets
from typing import Protocol

import requests

from core.config import Settings
from core.errors import NotifierError

logger = logging.getLogger("orgauth.sms")

FAKE_CODE = "9527"


class Notifier(Protocol):
    def generate_code(self) -> str: ...

    def send_code(self, phone: str, code: str) -> None: ...


def generate_numeric_code() -> str:
    """Return a 5 or 6 digit code in the range 10000-109999."""
    return str((1 + secrets.randbelow(10)) * 10000 + secrets.randbelow(10000))


class FakeSMSNotifier:
    def generate_code(self) -> str:
        return FAKE_CODE

    def send_code(self, phone: str, code: str) -> None:
        logger.info("sending %s code %s", phone, code)


class HttpSMSNotifier:
    """Deliver codes through a JSON SMS gateway.

    Request body: {"phone": "<prefix><phone>", "sign_name": ..., "template_id": ...,
    "template_params": [code]}. Any non-2xx response or transport error is a
    delivery failure.
    """

    def __init__(
        self,
        gateway_url: str,
        api_key: str = "",
        sign_name: str = "",
        template_id: str = "",
        country_prefix: str = "+86",
        timeout: float = 10,
        session: requests.Session | None = None,
    ) -> None:
        self.gateway_url = gateway_url
        self.api_key = api_key
        self.sign_name = sign_name
        self.template_id = template_id
        self.country_prefix = country_prefix
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    def generate_code(self) -> str:
        return generate_numeric_code()

    def send_code(self, phone: str, code: str) -> None:
        logger.info("sending code to %s", phone)
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        body = {
            "phone": f"{self.country_prefix}{phone}",
            "sign_name": self.sign_name,
            "template_id": self.template_id,
            "template_params": [code],
        }
        try:
            resp = self._session.post(self.gateway_url, json=body, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("SMS delivery to %s failed: %s", phone, exc)
            raise NotifierError() from exc


def build_notifier(settings: Settings) -> Notifier:
    if settings.sms_enabled:
        return HttpSMSNotifier(
            gateway_url=settings.sms_gateway_url,
            api_key=settings.sms_api_key,
            sign_name=settings.sms_sign_name,
            template_id=settings.sms_template_id,
            country_prefix=settings.sms_country_prefix,
        )
    logger.warning("SMS disabled -- verification codes are logged, not sent")
    return FakeSMSNotifier()
