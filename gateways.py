"""Clients for the external services the ledger talks to.

Services receive these through their constructors, so tests pass fakes with
the same ``generate`` / ``send`` / ``create_invoice`` methods.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import get_settings
from errors import ExternalServiceError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _post_json(
    url: str,
    body: dict[str, Any],
    *,
    headers: dict[str, str],
    timeout: float,
    service: str,
) -> dict[str, Any]:
    req = Request(
        url,
        data=json.dumps(body).encode("utf-8"),
        headers={"Accept": "application/json", "Content-Type": "application/json", **headers},
        method="POST",
    )
    try:
        with urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except (URLError, TimeoutError) as exc:
        logger.warning(f"gateway_error: service={service} error={exc}")
        raise ExternalServiceError(f"{service} request failed") from exc

    try:
        payload = json.loads(raw) if raw else {}
    except json.JSONDecodeError as exc:
        raise ExternalServiceError(f"Unexpected {service} response") from exc
    if not isinstance(payload, dict):
        raise ExternalServiceError(f"Unexpected {service} response")
    return payload


def parse_json_object(text: Optional[str]) -> dict[str, Any]:
    """Parse a model reply that is supposed to be a single JSON object."""
    if not text or not text.strip():
        raise ExternalServiceError("AI response is empty")
    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ExternalServiceError("AI response is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ExternalServiceError("AI response is not a JSON object")
    return data


class LanguageModelClient:
    def generate(self, instructions: str, input_text: str) -> str:
        raise NotImplementedError


class PushClient:
    def send(
        self, token: str, title: str, body: str, data: Optional[dict] = None
    ) -> None:
        raise NotImplementedError


class PaymentGatewayClient:
    def create_invoice(
        self,
        external_id: str,
        amount: int,
        description: str,
        payer_email: str,
        customer: dict[str, str],
    ) -> str:
        raise NotImplementedError


class OpenAIResponsesClient(LanguageModelClient):
    def __init__(
        self, api_key: str, model: str, base_url: str, timeout: float
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def generate(self, instructions: str, input_text: str) -> str:
        if not self.api_key:
            raise ExternalServiceError("Language model is not configured")
        payload = _post_json(
            f"{self.base_url}/responses",
            {"model": self.model, "instructions": instructions, "input": input_text},
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            service="language model",
        )
        text = payload.get("output_text") or _collect_output_text(payload)
        if not text:
            raise ExternalServiceError("AI response is empty")
        return text


def _collect_output_text(payload: dict[str, Any]) -> str:
    parts: list[str] = []
    for item in payload.get("output") or []:
        if not isinstance(item, dict):
            continue
        for content in item.get("content") or []:
            if isinstance(content, dict) and content.get("type") == "output_text":
                parts.append(str(content.get("text") or ""))
    return "".join(parts)


class ExpoPushClient(PushClient):
    def __init__(self, url: str, timeout: float) -> None:
        self.url = url
        self.timeout = timeout

    def send(
        self, token: str, title: str, body: str, data: Optional[dict] = None
    ) -> None:
        _post_json(
            self.url,
            {
                "to": token,
                "sound": "default",
                "title": title,
                "body": body,
                "data": data or {},
            },
            headers={"Accept-Encoding": "gzip, deflate"},
            timeout=self.timeout,
            service="push",
        )


class XenditInvoiceClient(PaymentGatewayClient):
    url = "https://api.xendit.co/v2/invoices"

    def __init__(self, api_key: str, timeout: float) -> None:
        self.api_key = api_key
        self.timeout = timeout

    def create_invoice(
        self,
        external_id: str,
        amount: int,
        description: str,
        payer_email: str,
        customer: dict[str, str],
    ) -> str:
        if not self.api_key:
            raise ExternalServiceError("Payment gateway is not configured")
        credentials = base64.b64encode(f"{self.api_key}:".encode("utf-8")).decode(
            "ascii"
        )
        payload = _post_json(
            self.url,
            {
                "external_id": external_id,
                "amount": amount,
                "description": description,
                "currency": "IDR",
                "reminder_time": 1,
                "payer_email": payer_email,
                "customer": customer,
            },
            headers={"Authorization": f"Basic {credentials}"},
            timeout=self.timeout,
            service="payment gateway",
        )
        invoice_url = payload.get("invoice_url")
        if not invoice_url:
            raise ExternalServiceError("Unexpected payment gateway response")
        return str(invoice_url)


def default_language_model() -> LanguageModelClient:
    settings = get_settings()
    return OpenAIResponsesClient(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        timeout=settings.http_timeout_secs,
    )


def default_push_client() -> PushClient:
    settings = get_settings()
    return ExpoPushClient(settings.push_url, timeout=settings.http_timeout_secs)


def default_payment_gateway() -> PaymentGatewayClient:
    settings = get_settings()
    return XenditInvoiceClient(
        settings.xendit_api_key, timeout=settings.http_timeout_secs
    )
