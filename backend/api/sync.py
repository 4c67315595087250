"""Transaction sync API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.dependencies import get_transaction_sync_service
from database import get_db
from models import Item
from schemas import TransactionSyncResultResponse
from services.transaction_sync_service import TransactionSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("/items/{item_id}", response_model=TransactionSyncResultResponse)
def sync_item(
    item_id: str,
    db: Session = Depends(get_db),
    sync_service: TransactionSyncService = Depends(get_transaction_sync_service),
):
    """Pull transaction updates for one Item.

    Always returns 200 for a known Item; success or failure is reported in
    the body.

    Raises:
        HTTPException:
            - 404 Not Found: Item does not exist
    """
    if db.get(Item, item_id) is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return sync_service.sync_item(db, item_id)


@router.post("/pending", response_model=list[TransactionSyncResultResponse])
def sync_pending(
    db: Session = Depends(get_db),
    sync_service: TransactionSyncService = Depends(get_transaction_sync_service),
):
    """Sync every Item flagged with pending updates.

    Raises:
        HTTPException:
            - 409 Conflict: A sweep is already running
    """
    if sync_service.is_sweep_in_progress():
        raise HTTPException(
            status_code=409,
            detail="Pending sync already in progress. Please wait for it to complete.",
        )
    try:
        return sync_service.sync_pending_items(db)
    except ValueError as e:
        if "already in progress" in str(e).lower():
            raise HTTPException(
                status_code=409,
                detail="Pending sync already in progress. Please wait for it to complete.",
            )
        raise
