"""Pydantic schemas for inbound provider webhooks."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PlaidWebhookError(BaseModel):
    """Error object embedded in ITEM / ERROR and LINK / SESSION_FINISHED events."""

    model_config = ConfigDict(extra="allow")

    error_type: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class PlaidWebhook(BaseModel):
    """Shape check for a webhook body.

    Only the fields the reconciliation core reads are declared; anything
    else Plaid sends is kept.
    """

    model_config = ConfigDict(extra="allow")

    webhook_type: str = Field(min_length=1)
    webhook_code: str = Field(min_length=1)
    item_id: Optional[str] = None
    account_id: Optional[str] = None
    error: Optional[PlaidWebhookError] = None
    environment: Optional[str] = None

    # ITEM
    consent_expiration_time: Optional[str] = None
    reason: Optional[str] = None

    # TRANSACTIONS / SYNC_UPDATES_AVAILABLE
    initial_update_complete: Optional[bool] = None
    historical_update_complete: Optional[bool] = None

    # LINK / SESSION_FINISHED
    link_token: Optional[str] = None
    link_session_id: Optional[str] = None
    status: Optional[str] = None
    public_token: Optional[str] = None
    public_tokens: Optional[list[str]] = None


class WebhookAck(BaseModel):
    """Response body returned once a delivery has been logged."""

    status: str  # "success" | "duplicate" | "error"
    message: str
    webhook_id: str
    log_id: Optional[int] = None
