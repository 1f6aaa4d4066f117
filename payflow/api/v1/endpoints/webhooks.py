# payflow/api/v1/endpoints/webhooks.py
"""
Webhook endpoint for Monnify transaction events.

SECURITY NOTES:
- The monnify-signature header (HMAC-SHA512 of the raw body) is verified
  before the payload is read
- Repeat deliveries are skipped via the processed marker
- Processing errors still return 200; reconciliation continues through the
  scheduled re-verification
"""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from redis import Redis
from sqlalchemy.orm import Session

from payflow.api import deps
from payflow.db.session import get_db
from payflow.services.payment.exceptions import PaymentError, WebhookSignatureError
from payflow.services.payment.gateway_factory import GatewayFactory
from payflow.services.payment.verification_service import PaymentVerificationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/monnify")
async def monnify_webhook(
    request: Request,
    monnify_signature: str = Header(None, alias="monnify-signature"),
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(deps.get_gateways),
    redis: Redis = Depends(deps.get_redis),
):
    body = await request.body()

    if not monnify_signature:
        logger.warning("Monnify webhook received without monnify-signature header")
        raise HTTPException(status_code=400, detail="Missing signature")

    service = PaymentVerificationService(db, gateway_factory=gateways, redis=redis)
    try:
        return await service.verify_webhook(body, monnify_signature)
    except WebhookSignatureError:
        client_ip = request.client.host if request.client else None
        logger.warning(f"Invalid Monnify webhook signature from {client_ip}")
        raise HTTPException(status_code=400, detail="Invalid signature")
    except PaymentError as e:
        logger.error(f"Error processing Monnify webhook: {e.message}")
        return {"status": "processing_error", "message": e.message}
    except Exception as e:
        logger.error(f"Unexpected error processing Monnify webhook: {e}")
        return {"status": "processing_error", "message": "Webhook processing failed"}
