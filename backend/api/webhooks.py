"""Plaid webhook endpoint.

Responds 200 for every delivery that reached the webhook log, including
ones whose processing failed, so Plaid does not retry forever. Only a
malformed body (400) or a failure to log the delivery (503) is
reported as an error status.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from api.dependencies import get_webhook_processor
from database import get_db
from schemas import PlaidWebhook, WebhookAck
from services.exceptions import TransientStorageError, WebhookValidationError
from services.webhook_service import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plaid", tags=["plaid"])


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    db: Session = Depends(get_db),
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """Receive a Plaid webhook."""
    try:
        payload = json.loads(await request.body())
        PlaidWebhook.model_validate(payload)
    except (ValueError, ValidationError) as e:
        logger.warning("Rejected malformed webhook: %s", e)
        raise HTTPException(status_code=400, detail="Malformed webhook body")

    try:
        result = await run_in_threadpool(processor.handle, db, payload)
    except WebhookValidationError as e:
        logger.warning("Rejected webhook: %s", e)
        raise HTTPException(status_code=400, detail=str(e))
    except TransientStorageError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return WebhookAck(
        status=result.status,
        message=result.message,
        webhook_id=result.webhook_id,
        log_id=result.log_id,
    )
