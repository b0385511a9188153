from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import json
import logging
from typing import Any, Mapping

import stripe

from linkvault.core.config import get_settings
from linkvault.core.errors import ConfigError, MissingFieldError, WebhookSignatureError
from linkvault.services.payments.reconciler import FLOW_PARTNER, FLOW_STARTER, PaymentEvent


logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str | None


def parse_webhook(payload: bytes, signature: str | None) -> dict[str, Any]:
    # Verify the Stripe signature header, then return the event as a plain dict.
    secret = get_settings().stripe_webhook_secret
    if not secret:
        raise ConfigError("stripe_webhook_secret is not configured")
    if not signature:
        raise WebhookSignatureError("missing Stripe-Signature header")
    try:
        stripe.Webhook.construct_event(payload, signature, secret)
        event = json.loads(payload)
    except ValueError as exc:
        raise WebhookSignatureError("invalid webhook payload") from exc
    except stripe.SignatureVerificationError as exc:
        raise WebhookSignatureError("invalid webhook signature") from exc
    if not isinstance(event, dict):
        raise WebhookSignatureError("invalid webhook payload")
    return event


def _cents_to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        return (Decimal(str(value)) / Decimal(100)).quantize(Decimal("0.01"))
    except InvalidOperation as exc:
        raise MissingFieldError(f"invalid amount_total: {value!r}") from exc


def _quantity(metadata: Mapping[str, Any]) -> int:
    raw = metadata.get("count")
    try:
        quantity = int(raw)
    except (TypeError, ValueError) as exc:
        raise MissingFieldError("checkout metadata is missing a link count") from exc
    if quantity < 1:
        raise MissingFieldError("checkout metadata link count must be positive")
    return quantity


def event_to_payment(event: Mapping[str, Any]) -> PaymentEvent | None:
    """Map a completed checkout session to a PaymentEvent; other events map to None."""
    if event.get("type") != CHECKOUT_COMPLETED:
        return None
    checkout = (event.get("data") or {}).get("object") or {}
    metadata = checkout.get("metadata") or {}
    flow = metadata.get("flow") or FLOW_PARTNER
    owner_id = metadata.get("partnerId")
    if flow != FLOW_STARTER and not owner_id:
        raise MissingFieldError("checkout metadata is missing partnerId")
    customer_details = checkout.get("customer_details") or {}
    customer_email = (
        metadata.get("customerEmail")
        or checkout.get("customer_email")
        or customer_details.get("email")
    )
    transaction_id = metadata.get("transactionId") or event.get("id")
    if not transaction_id:
        raise MissingFieldError("checkout event has no transaction id")
    return PaymentEvent(
        transaction_id=str(transaction_id),
        owner_id=owner_id,
        quantity=_quantity(metadata),
        amount=_cents_to_decimal(checkout.get("amount_total")),
        currency=str(checkout.get("currency") or "usd").upper(),
        plan_name=metadata.get("packageName") or "QR Code Package",
        gateway_session_id=checkout.get("id"),
        payment_intent_id=checkout.get("payment_intent"),
        customer_email=customer_email,
        flow=flow,
    )


async def create_purchase_checkout(
    owner_id: str,
    package_name: str,
    *,
    success_url: str | None = None,
    cancel_url: str | None = None,
) -> CheckoutSession:
    # Hosted checkout for a configured link package; the webhook carries the metadata back.
    settings = get_settings()
    package = settings.link_packages.get(package_name)
    if package is None:
        raise MissingFieldError(f"unknown link package: {package_name}")
    if not settings.stripe_secret_key:
        raise ConfigError("stripe_secret_key is not configured")
    stripe.api_key = settings.stripe_secret_key
    params: dict[str, Any] = {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": [
            {
                "price_data": {
                    "currency": "usd",
                    "unit_amount": package.unit_amount_cents,
                    "product_data": {"name": f"{package.count} secure links ({package_name})"},
                },
                "quantity": package.count,
            }
        ],
        "success_url": success_url or settings.checkout_success_url,
        "cancel_url": cancel_url or settings.checkout_cancel_url,
        "metadata": {
            "partnerId": owner_id,
            "count": str(package.count),
            "packageName": package_name,
            "flow": FLOW_PARTNER,
        },
    }
    checkout = await asyncio.to_thread(stripe.checkout.Session.create, **params)
    logger.info(
        "stripe_checkout_created owner_id=%s package=%s session_id=%s",
        owner_id,
        package_name,
        checkout["id"],
    )
    return CheckoutSession(id=checkout["id"], url=checkout.get("url"))
