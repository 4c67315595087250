#!/usr/bin/env python3
"""Plaid API setup script.

Validates Plaid credentials by creating a Hosted Link token and offers to
store them in the system keychain.

Usage:
    1. Get your client_id and secret from https://dashboard.plaid.com/
    2. Run this script and follow the prompts
    3. Set PLAID_WEBHOOK_URL in .env to the public URL of /api/plaid/webhook
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from integrations.exceptions import ProviderError
from integrations.plaid_client import PlaidClient
from services.credential_manager import list_credentials, mask_credential, set_credential


def validate_credentials(client_id: str, secret: str, env: str) -> str:
    """Create a throwaway link token; returns its hosted link URL.

    Raises:
        ProviderError: If Plaid rejects the request.
    """
    client = PlaidClient(client_id=client_id, secret=secret, environment=env)
    result = client.create_link_token(client_user_id="setup-check")
    return result.hosted_link_url or ""


def _offer_keychain_store(credentials: dict[str, str], env: str) -> None:
    existing = list_credentials(env)
    for key, value in existing.items():
        print(f"  Keychain already has {key} = {mask_credential(value)}")
    answer = input("\nStore these credentials in the system keychain? [Y/n] ").strip().lower()
    if answer not in ("", "y", "yes"):
        print("  Skipped keychain storage.")
        return
    for key, value in credentials.items():
        if set_credential(key, value, env):
            print(f"  Stored {key} in keychain for {env}")
        else:
            print(f"  Failed to store {key}")


def main():
    """Prompt for credentials and validate them."""
    print("Plaid API Setup")
    print("=" * 50)

    client_id = input("Enter your Plaid client_id: ").strip()
    secret = input("Enter your Plaid secret: ").strip()
    if not client_id or not secret:
        print("Error: client_id and secret are both required")
        sys.exit(1)

    env_choice = input("Environment: 1. sandbox  2. production [1]: ").strip() or "1"
    env = {"1": "sandbox", "2": "production"}.get(env_choice, "sandbox")

    print(f"\nValidating credentials against {env} environment...")
    try:
        hosted_link_url = validate_credentials(client_id, secret, env)
    except ProviderError as e:
        print(f"Error: {e}")
        print("Check the client_id/secret pair and that it matches the environment.")
        sys.exit(1)

    print("\nSuccess!")
    if hosted_link_url:
        print(f"Test Hosted Link: {hosted_link_url}")
    print(f"\nPLAID_ENVIRONMENT={env}")

    _offer_keychain_store({
        "PLAID_CLIENT_ID": client_id,
        "PLAID_SECRET": secret,
    }, env)


if __name__ == "__main__":
    main()
