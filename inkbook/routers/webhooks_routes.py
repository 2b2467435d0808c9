# inkbook/routers/webhooks_routes.py

import asyncio
import json
import logging
from datetime import datetime, timezone

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session

from inkbook.config import get_settings
from inkbook.db import get_session
from inkbook.deps import get_outbox
from inkbook.outbound import Outbox
from inkbook.payments import apply_payment_event
from inkbook.schemas import PaymentEventResponse

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/webhooks",
    tags=["webhooks"],
)


@router.post("/payments", response_model=PaymentEventResponse)
async def payment_webhook(
    request: Request,
    session: Session = Depends(get_session),
    outbox: Outbox = Depends(get_outbox),
):
    # 1) Verify the signature against the raw body
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.warning("Payment webhook received without signature")
        raise HTTPException(status_code=400, detail="No signature")

    secret = get_settings().stripe_webhook_secret
    if secret is None:
        logger.error("No payment webhook secret configured")
        raise HTTPException(status_code=503, detail="Webhook configuration error")

    try:
        stripe.Webhook.construct_event(payload, sig_header, secret.get_secret_value())
    except stripe.SignatureVerificationError:
        logger.warning("Payment webhook signature verification failed")
        raise HTTPException(status_code=400, detail="Invalid signature")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    # 2) Hand the verified event to the ledger
    event = json.loads(payload)
    if not all(key in event for key in ("id", "type", "created")):
        raise HTTPException(status_code=400, detail="Malformed event")
    created_at = datetime.fromtimestamp(event["created"], timezone.utc)
    outcome = await asyncio.to_thread(
        apply_payment_event,
        session,
        event["id"],
        event["type"],
        created_at,
        event.get("data", {}).get("object", {}),
        outbox=outbox,
    )
    return {"received": True, "outcome": outcome}
