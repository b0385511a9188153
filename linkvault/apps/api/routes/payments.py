from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Request
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.apps.api.deps import PartnerPrincipal, get_db, require_partner
from linkvault.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from linkvault.apps.api.response import ApiModel
from linkvault.services.payments.reconciler import reconcile
from linkvault.services.payments.stripe_gateway import (
    create_purchase_checkout,
    event_to_payment,
    parse_webhook,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"], responses=DEFAULT_ERROR_RESPONSES)


class WebhookResponse(ApiModel):
    success: bool
    issued: int = 0
    already_processed: bool = False
    ignored: bool = False


class CheckoutRequest(ApiModel):
    package: str = Field(min_length=1)
    success_url: str | None = None
    cancel_url: str | None = None


class CheckoutResponse(ApiModel):
    session_id: str
    url: str | None = None


@router.post("/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
) -> WebhookResponse:
    # Signature is verified against the raw body before anything is parsed.
    payload = await request.body()
    event = parse_webhook(payload, stripe_signature)
    payment = event_to_payment(event)
    if payment is None:
        logger.info("stripe_event_ignored type=%s id=%s", event.get("type"), event.get("id"))
        return WebhookResponse(success=True, ignored=True)
    result = await reconcile(db, payment)
    return WebhookResponse(
        success=True,
        issued=result.issued,
        already_processed=result.already_processed,
    )


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    payload: CheckoutRequest,
    principal: PartnerPrincipal = Depends(require_partner),
) -> CheckoutResponse:
    checkout = await create_purchase_checkout(
        principal.partner_id,
        payload.package,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
    )
    return CheckoutResponse(session_id=checkout.id, url=checkout.url)
