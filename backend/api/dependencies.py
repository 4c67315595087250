"""Shared FastAPI dependencies for process-lived services.

The provider gateway and the secret cipher are constructed once in
``main`` and kept on ``app.state``; tests replace them through
``app.dependency_overrides``.
"""

from fastapi import Depends, Request

from config import settings
from integrations.provider_protocol import AggregationProvider
from services.secret_cipher import SecretCipher
from services.transaction_sync_service import TransactionSyncService
from services.webhook_service import WebhookProcessor, build_webhook_processor


def get_provider(request: Request) -> AggregationProvider:
    return request.app.state.provider


def get_cipher(request: Request) -> SecretCipher:
    return request.app.state.cipher


def get_webhook_processor(
    provider: AggregationProvider = Depends(get_provider),
    cipher: SecretCipher = Depends(get_cipher),
) -> WebhookProcessor:
    return build_webhook_processor(provider, cipher)


def get_transaction_sync_service(
    provider: AggregationProvider = Depends(get_provider),
    cipher: SecretCipher = Depends(get_cipher),
) -> TransactionSyncService:
    return TransactionSyncService(provider, cipher, settings.TRANSACTION_SYNC_MAX_RETRIES)
