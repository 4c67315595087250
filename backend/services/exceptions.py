"""Exceptions raised by the reconciliation services."""


class ReconciliationError(Exception):
    """Base class for failures while applying a provider event."""

    pass


class WebhookValidationError(ReconciliationError):
    """Event is malformed: nothing to act on, never retried."""

    pass


class NotFoundError(ReconciliationError):
    """A referenced LinkToken or Item does not exist locally."""

    pass


class DuplicateConflictError(ReconciliationError):
    """Update-mode re-auth returned a different institution than the one on file.

    Raised instead of accepting credentials that may belong to another
    account holder. Requires operator investigation.
    """

    def __init__(self, message: str, item_id: str | None = None):
        self.item_id = item_id
        super().__init__(message)


class TransientStorageError(ReconciliationError):
    """The store could not be reached; the whole event may be retried."""

    pass


class CipherError(Exception):
    """Base class for SecretCipher failures."""

    pass


class KeyNotFoundError(CipherError):
    pass


class KeyInactiveError(CipherError):
    """A key name exists but none of its versions is active."""

    pass


class AuthenticationFailureError(CipherError):
    """Ciphertext or tag did not verify (tampered data or wrong key)."""

    pass
