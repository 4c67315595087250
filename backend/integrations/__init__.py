"""External API integrations.

This package contains:
- Provider protocol: normalized shapes and the gateway interface
- Plaid client: Integration with the Plaid API
- Provider exceptions: typed failures raised by the gateway
"""

from integrations.exceptions import ProviderError
from integrations.plaid_client import PlaidClient
from integrations.provider_protocol import (
    AggregationProvider,
    ProviderAccount,
    ProviderItem,
    ProviderTransaction,
)

__all__ = [
    "AggregationProvider",
    "PlaidClient",
    "ProviderAccount",
    "ProviderError",
    "ProviderItem",
    "ProviderTransaction",
]
