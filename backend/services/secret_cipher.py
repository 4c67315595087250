"""Envelope encryption for provider access tokens.

Tokens are sealed with AES-256-GCM under a versioned key from the
``encryption_keys`` table. The stored value is a single opaque byte
string laid out as ``nonce (16) || tag (16) || ciphertext``; the numeric
key id is stored next to it so old ciphertext stays readable after a
rotation.
"""

import logging
import os
import threading

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from sqlalchemy.orm import Session

from models import EncryptionKey, utcnow
from services.exceptions import (
    AuthenticationFailureError,
    CipherError,
    KeyInactiveError,
    KeyNotFoundError,
)

logger = logging.getLogger(__name__)

NONCE_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32


class SecretCipher:
    """Encrypts and decrypts secrets with database-held keys.

    One instance is shared per process. Key material is cached after the
    first lookup; the cache is read-mostly and is dropped wholesale by
    :meth:`clear_cache` when keys rotate.
    """

    def __init__(self, key_name: str):
        self._key_name = key_name
        self._lock = threading.Lock()
        self._keys_by_id: dict[int, bytes] = {}
        self._active_id_by_name: dict[str, int] = {}

    @property
    def key_name(self) -> str:
        return self._key_name

    def clear_cache(self) -> None:
        with self._lock:
            self._keys_by_id.clear()
            self._active_id_by_name.clear()
        logger.info("Encryption key cache cleared")

    # ------------------------------------------------------------------
    # Key lookup
    # ------------------------------------------------------------------

    def _key_by_id(self, db: Session, key_id: int) -> bytes:
        """Key material for ``key_id``; inactive (rotated) keys are allowed."""
        with self._lock:
            cached = self._keys_by_id.get(key_id)
        if cached is not None:
            return cached

        row = db.get(EncryptionKey, key_id)
        if row is None:
            raise KeyNotFoundError(f"Encryption key not found: {key_id}")

        with self._lock:
            self._keys_by_id[row.id] = row.key_value
        return row.key_value

    def _active_key(self, db: Session, key_name: str) -> tuple[int, bytes]:
        with self._lock:
            key_id = self._active_id_by_name.get(key_name)
            key_value = self._keys_by_id.get(key_id) if key_id is not None else None
        if key_id is not None and key_value is not None:
            return key_id, key_value

        rows = db.query(EncryptionKey).filter(EncryptionKey.key_name == key_name).all()
        if not rows:
            raise KeyNotFoundError(f"Encryption key not found: {key_name}")
        active = [row for row in rows if row.is_active]
        if not active:
            raise KeyInactiveError(f"No active encryption key for {key_name}")
        row = max(active, key=lambda r: r.id)

        with self._lock:
            self._keys_by_id[row.id] = row.key_value
            self._active_id_by_name[key_name] = row.id
        return row.id, row.key_value

    # ------------------------------------------------------------------
    # Encrypt / decrypt
    # ------------------------------------------------------------------

    def encrypt(self, db: Session, plaintext: str, key_name: str | None = None) -> tuple[bytes, int]:
        """Seal ``plaintext`` under the active key.

        Returns:
            ``(ciphertext, key_id)`` to store side by side.
        """
        key_id, key_value = self._active_key(db, key_name or self._key_name)
        nonce = os.urandom(NONCE_LENGTH)
        try:
            sealed = AESGCM(key_value).encrypt(nonce, plaintext.encode("utf-8"), None)
        except ValueError as e:
            raise CipherError(f"Invalid key material for key {key_id}: {e}") from e
        # AESGCM appends the tag; the stored layout puts it before the ciphertext.
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return nonce + tag + ciphertext, key_id

    def decrypt(self, db: Session, data: bytes, key_id: int) -> str:
        """Open a value produced by :meth:`encrypt`.

        Raises:
            KeyNotFoundError: No key row has ``key_id``.
            AuthenticationFailureError: The tag does not verify.
        """
        key_value = self._key_by_id(db, key_id)
        data = bytes(data)
        if len(data) < NONCE_LENGTH + TAG_LENGTH:
            raise AuthenticationFailureError("Ciphertext is truncated")

        nonce = data[:NONCE_LENGTH]
        tag = data[NONCE_LENGTH:NONCE_LENGTH + TAG_LENGTH]
        ciphertext = data[NONCE_LENGTH + TAG_LENGTH:]
        try:
            plaintext = AESGCM(key_value).decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            logger.error("Authentication tag mismatch decrypting with key %s", key_id)
            raise AuthenticationFailureError(
                f"Ciphertext failed authentication under key {key_id}"
            ) from e
        except ValueError as e:
            raise CipherError(f"Invalid key material for key {key_id}: {e}") from e
        return plaintext.decode("utf-8")

    # ------------------------------------------------------------------
    # Key management
    # ------------------------------------------------------------------

    def create_key(self, db: Session, key_name: str | None = None) -> EncryptionKey:
        """Insert a fresh active 256-bit key under ``key_name``.

        Does not deactivate anything; use :meth:`rotate_key` to replace
        an existing key.
        """
        key = EncryptionKey(
            key_name=key_name or self._key_name,
            key_value=AESGCM.generate_key(bit_length=KEY_LENGTH * 8),
            is_active=True,
        )
        db.add(key)
        db.flush()
        logger.info("Created encryption key %s (id=%s)", key.key_name, key.id)
        return key

    def rotate_key(
        self,
        db: Session,
        new_key_name: str,
        old_key_name: str | None = None,
    ) -> EncryptionKey:
        """Replace the active key and start encrypting with ``new_key_name``.

        Every active version of the old name (and of the new name, if it
        already exists) is deactivated, never deleted, so existing
        ciphertext still decrypts by key id. The caller commits.
        """
        old_key_name = old_key_name or self._key_name
        now = utcnow()
        retired = (
            db.query(EncryptionKey)
            .filter(
                EncryptionKey.key_name.in_([old_key_name, new_key_name]),
                EncryptionKey.is_active.is_(True),
            )
            .all()
        )
        for row in retired:
            row.is_active = False
            row.deactivated_at = now
        db.flush()

        key = self.create_key(db, new_key_name)
        self._key_name = new_key_name
        self.clear_cache()
        logger.info(
            "Rotated encryption key %s -> %s (id=%s), %d key(s) retired",
            old_key_name, new_key_name, key.id, len(retired),
        )
        return key
