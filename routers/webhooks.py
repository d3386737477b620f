"""routers/webhooks.py - Inbound payment gateway webhooks."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from errors import InvalidSignature, ValidationError
from schemas.webhooks import WebhookAck
from services.webhook_service import get_reconciler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(request: Request):
    # Raw bytes, the signature covers the exact payload
    raw_body = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        return JSONResponse(status_code=400, content={"error": "Missing stripe-signature header"})

    try:
        result = await run_in_threadpool(get_reconciler().handle, raw_body, signature)
    except InvalidSignature:
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": e.message})
    except Exception:
        # Non-2xx makes the gateway redeliver
        logger.exception("[webhooks] processing failed")
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    return result
