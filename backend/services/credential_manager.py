"""Plaid API credentials in the system keychain.

Plaid issues one ``client_id`` per team but a separate secret for each
environment, so ``PLAID_SECRET`` is stored once per environment under the
keychain user ``PLAID_SECRET@<environment>`` while ``PLAID_CLIENT_ID`` is
shared. Reading a secret falls back to the unscoped ``PLAID_SECRET``
entry so a single-environment setup keeps working.

Keychain failures (locked keychain, no backend) never break startup:
reads return ``None`` and writes return ``False`` so the settings chain
falls through to ``.env``.
"""

import logging

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

logger = logging.getLogger(__name__)

SERVICE_NAME = "clientlink"

CREDENTIAL_KEYS: frozenset[str] = frozenset({"PLAID_CLIENT_ID", "PLAID_SECRET"})

# Keys Plaid issues separately for sandbox and production
ENVIRONMENT_SCOPED_KEYS: frozenset[str] = frozenset({"PLAID_SECRET"})

PLAID_ENVIRONMENTS = ("sandbox", "production")


def keychain_username(key: str, environment: str | None = None) -> str:
    """Keychain user name for ``key``, scoped to ``environment`` where Plaid scopes it.

    Raises:
        ValueError: ``environment`` is not a Plaid environment.
    """
    if key not in ENVIRONMENT_SCOPED_KEYS or not environment:
        return key
    env = environment.lower()
    if env not in PLAID_ENVIRONMENTS:
        raise ValueError(f"Unknown Plaid environment {environment!r}")
    return f"{key}@{env}"


def mask_credential(value: str) -> str:
    """Show only the last four characters, for operator-facing output."""
    if len(value) <= 8:
        return "****"
    return f"****{value[-4:]}"


def _read(username: str) -> str | None:
    try:
        return keyring.get_password(SERVICE_NAME, username)
    except KeyringError:
        logger.debug("keyring lookup failed for %s", username, exc_info=True)
        return None


def get_credential(key: str, environment: str | None = None) -> str | None:
    """Read a Plaid credential, preferring the entry for ``environment``."""
    if key not in CREDENTIAL_KEYS:
        return None
    username = keychain_username(key, environment)
    value = _read(username)
    if value is None and username != key:
        value = _read(key)
    return value


def set_credential(key: str, value: str, environment: str | None = None) -> bool:
    """Store a Plaid credential; secrets are stored for ``environment``.

    Returns:
        ``True`` if stored, ``False`` for a rejected key or value, or a
        keychain failure.
    """
    if key not in CREDENTIAL_KEYS:
        logger.warning("Attempted to store non-credential key: %s", key)
        return False
    if not value or not value.strip():
        logger.warning("Attempted to store empty value for %s", key)
        return False

    username = keychain_username(key, environment)
    try:
        keyring.set_password(SERVICE_NAME, username, value.strip())
    except KeyringError:
        logger.warning("Failed to store %s in keychain", username, exc_info=True)
        return False
    logger.info("Stored %s in keychain", username)
    return True


def delete_credential(key: str, environment: str | None = None) -> bool:
    """Remove a stored credential. Returns ``False`` if nothing was removed."""
    if key not in CREDENTIAL_KEYS:
        logger.warning("Attempted to delete non-credential key: %s", key)
        return False

    username = keychain_username(key, environment)
    try:
        keyring.delete_password(SERVICE_NAME, username)
    except PasswordDeleteError:
        logger.debug("No keychain entry for %s", username)
        return False
    except KeyringError:
        logger.warning("Failed to delete %s from keychain", username, exc_info=True)
        return False
    logger.info("Deleted %s from keychain", username)
    return True


def list_credentials(environment: str | None = None) -> dict[str, str]:
    """Credentials that would be used for ``environment``, keyed by name."""
    result: dict[str, str] = {}
    for key in sorted(CREDENTIAL_KEYS):
        value = get_credential(key, environment)
        if value is not None:
            result[key] = value
    return result
