#!/usr/bin/env python3
"""Rotate (or create) the encryption key used for Plaid access tokens.

Rotation deactivates the current key and inserts a fresh 256-bit key.
Old keys stay in the table so existing ciphertext still decrypts by key
id; nothing is re-encrypted. Remember to point ENCRYPTION_KEY_NAME at the
new name when it differs from the old one.

Usage:
    python -m scripts.rotate_encryption_key --create
    python -m scripts.rotate_encryption_key --new-name plaid_access_token_v2
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import settings
from database import get_session_local
from logging_config import setup_logging
from models import EncryptionKey
from services.secret_cipher import SecretCipher


def run(db, *, new_name: str | None, old_name: str | None, create: bool) -> EncryptionKey:
    """Create the first key or rotate to ``new_name``; commits on success."""
    cipher = SecretCipher(old_name or settings.ENCRYPTION_KEY_NAME)
    try:
        if create:
            existing = (
                db.query(EncryptionKey)
                .filter(
                    EncryptionKey.key_name == cipher.key_name,
                    EncryptionKey.is_active.is_(True),
                )
                .first()
            )
            if existing is not None:
                raise ValueError(f"Active key already exists for {cipher.key_name} (id={existing.id})")
            key = cipher.create_key(db)
        else:
            key = cipher.rotate_key(db, new_name or cipher.key_name, old_name)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return key


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create or rotate the access token encryption key.")
    parser.add_argument(
        "--create",
        action="store_true",
        help="Create the first key for ENCRYPTION_KEY_NAME (fails if one is active)",
    )
    parser.add_argument("--new-name", help="Key name to rotate to (default: reuse the old name)")
    parser.add_argument("--old-name", help="Key name to retire (default: ENCRYPTION_KEY_NAME)")
    args = parser.parse_args(argv)

    setup_logging()
    db = get_session_local()()
    try:
        key = run(db, new_name=args.new_name, old_name=args.old_name, create=args.create)
        # Read while the session is open; commit expired the instance
        key_id, key_name = key.id, key.key_name
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()

    print(f"Active key: {key_name} (id={key_id})")
    if key_name != settings.ENCRYPTION_KEY_NAME:
        print(f"Set ENCRYPTION_KEY_NAME={key_name} before restarting the service.")


if __name__ == "__main__":
    main()
