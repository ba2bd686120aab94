"""
Shopify customer webhooks
"""
import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from audience_sync.api.dependencies import get_webhook_secret, get_webhook_service
from audience_sync.services.webhook_service import verify_shopify_webhook
from audience_sync.utils.logger import log

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _verified_payload(request: Request, signature: Optional[str], secret: Optional[str], topic: str) -> dict:
    raw_body = await request.body()
    if not verify_shopify_webhook(raw_body, signature, secret):
        log.warning(f"Invalid webhook signature for {topic}")
        raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        return json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")


@router.post("/customers/create")
async def customer_created(
    request: Request,
    x_shopify_hmac_sha256: Optional[str] = Header(None),
    secret: Optional[str] = Depends(get_webhook_secret),
    service=Depends(get_webhook_service),
):
    payload = await _verified_payload(request, x_shopify_hmac_sha256, secret, "customers/create")
    try:
        service.handle_customer_created(payload)
    except Exception as e:
        log.error(f"Error processing customer create webhook: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to process webhook")
    return {"success": True}


@router.post("/customers/update")
async def customer_updated(
    request: Request,
    x_shopify_hmac_sha256: Optional[str] = Header(None),
    secret: Optional[str] = Depends(get_webhook_secret),
    service=Depends(get_webhook_service),
):
    payload = await _verified_payload(request, x_shopify_hmac_sha256, secret, "customers/update")
    try:
        service.handle_customer_updated(payload)
    except Exception as e:
        log.error(f"Error processing customer update webhook: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to process webhook")
    return {"success": True}
