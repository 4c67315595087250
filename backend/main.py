"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api import sync, webhooks
from config import settings
from integrations.plaid_client import PlaidClient
from logging_config import setup_logging
from services.secret_cipher import SecretCipher

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Report missing provider credentials on startup."""
    if not app.state.provider.is_configured():
        logger.warning("Plaid credentials are not configured; webhook processing will fail")
    yield


app = FastAPI(
    title="ClientLink",
    description="Bank connection webhooks and account-link reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)

# Process-lived services, read by api.dependencies
app.state.provider = PlaidClient()
app.state.cipher = SecretCipher(settings.ENCRYPTION_KEY_NAME)

# Include API routers
app.include_router(webhooks.router)
app.include_router(sync.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
