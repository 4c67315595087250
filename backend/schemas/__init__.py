"""Pydantic schemas for API request/response validation."""

from schemas.sync import TransactionSyncResultResponse
from schemas.webhook import PlaidWebhook, PlaidWebhookError, WebhookAck

__all__ = [
    "PlaidWebhook",
    "PlaidWebhookError",
    "TransactionSyncResultResponse",
    "WebhookAck",
]
