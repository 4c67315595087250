"""Pydantic schemas for transaction sync endpoints."""

from typing import Optional

from pydantic import BaseModel


class TransactionSyncResultResponse(BaseModel):
    """Response schema for one Item's transaction sync."""

    item_id: str
    success: bool
    plaid_item_id: str = ""
    added: int = 0
    modified: int = 0
    removed: int = 0
    is_initial_sync: bool = False
    error: Optional[str] = None

    model_config = {"from_attributes": True}
