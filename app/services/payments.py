"""Mollie payment provider adapter.

Everything that knows Mollie's field names lives here. The rest of the
application only sees :class:`ProviderPayment`, :class:`CreatedPayment` and
:class:`Mandate`, and catches :class:`PaymentProviderError`.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Protocol

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

PROVIDER_NAME = "mollie"


class PaymentProviderError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PaymentStatus(str, enum.Enum):
    paid = "paid"
    failed = "failed"
    canceled = "canceled"
    expired = "expired"
    other = "other"

    @classmethod
    def from_provider(cls, raw: Optional[str]) -> "PaymentStatus":
        try:
            return cls(raw)
        except ValueError:
            # open / pending / authorized and anything Mollie adds later
            return cls.other


@dataclass(frozen=True)
class ProviderPayment:
    id: str
    status: PaymentStatus
    customer_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.status is PaymentStatus.paid


@dataclass(frozen=True)
class CreatedPayment:
    id: str
    checkout_url: str


@dataclass(frozen=True)
class Mandate:
    id: str
    status: str


class PaymentProvider(Protocol):
    name: str

    def create_payment(
        self,
        *,
        amount: Decimal,
        description: str,
        redirect_url: str,
        webhook_url: str,
        metadata: dict[str, Any],
    ) -> CreatedPayment: ...

    def get_payment(self, payment_reference: str) -> ProviderPayment: ...

    def create_customer(self, *, name: str, email: str) -> str: ...

    def get_customer_mandates(self, customer_id: str) -> list[Mandate]: ...


def format_amount(amount: Decimal) -> str:
    return f"{Decimal(amount):.2f}"


class MollieClient:
    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.mollie.com/v2",
        timeout: float = 10.0,
        currency: str = "EUR",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not api_key:
            raise ValueError("MOLLIE_API_KEY is required.")
        self.currency = currency
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> "MollieClient":
        return cls(
            api_key=settings.mollie_api_key,
            base_url=settings.mollie_api_url,
            timeout=settings.mollie_timeout_seconds,
            currency=settings.payment_currency,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, json=json)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Mollie {method} {path} timed out: {e}")
            raise PaymentProviderError(f"Mollie request timed out: {method} {path}") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"Mollie {method} {path} failed: {e.response.status_code} - {e.response.text}")
            raise PaymentProviderError(
                f"Mollie API error: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Mollie {method} {path} transport error: {e}")
            raise PaymentProviderError(f"Mollie transport error: {e}") from e
        except ValueError as e:
            raise PaymentProviderError(f"Mollie returned a non-JSON body for {method} {path}") from e

        if not isinstance(data, dict):
            logger.error(f"Mollie {method} {path} returned {type(data).__name__} instead of an object")
            raise PaymentProviderError(f"Mollie returned an unexpected body for {method} {path}")
        return data

    def create_payment(
        self,
        *,
        amount: Decimal,
        description: str,
        redirect_url: str,
        webhook_url: str,
        metadata: dict[str, Any],
    ) -> CreatedPayment:
        data = self._request(
            "POST",
            "/payments",
            json={
                "amount": {"currency": self.currency, "value": format_amount(amount)},
                "description": description,
                "redirectUrl": redirect_url,
                "webhookUrl": webhook_url,
                "metadata": metadata,
            },
        )

        payment_id = data.get("id")
        checkout_url = (data.get("_links") or {}).get("checkout", {}).get("href")
        if not payment_id or not checkout_url:
            raise PaymentProviderError("Mollie did not return a payment id and checkout URL.")

        logger.info(f"Created Mollie payment {payment_id} ({format_amount(amount)} {self.currency})")
        return CreatedPayment(id=payment_id, checkout_url=checkout_url)

    def get_payment(self, payment_reference: str) -> ProviderPayment:
        data = self._request("GET", f"/payments/{payment_reference}")

        status = PaymentStatus.from_provider(data.get("status"))
        # Mollie SDKs treat any payment carrying paidAt as paid
        if status is PaymentStatus.other and data.get("paidAt"):
            status = PaymentStatus.paid

        metadata = data.get("metadata")
        return ProviderPayment(
            id=data.get("id", payment_reference),
            status=status,
            customer_id=data.get("customerId") or None,
            metadata=metadata if isinstance(metadata, dict) else {},
        )

    def create_customer(self, *, name: str, email: str) -> str:
        data = self._request("POST", "/customers", json={"name": name, "email": email})
        customer_id = data.get("id")
        if not customer_id:
            raise PaymentProviderError("Mollie did not return a customer id.")
        logger.info(f"Created Mollie customer {customer_id}")
        return customer_id

    def get_customer_mandates(self, customer_id: str) -> list[Mandate]:
        data = self._request("GET", f"/customers/{customer_id}/mandates")
        mandates = (data.get("_embedded") or {}).get("mandates") or []
        return [Mandate(id=m["id"], status=m.get("status", "")) for m in mandates if m.get("id")]
