from __future__ import annotations


class LinkVaultError(Exception):
    """Base error for LinkVault."""


class ConfigError(LinkVaultError):
    """Missing or invalid process configuration."""


class LinkValidationError(LinkVaultError):
    """Caller-facing validation failure; never retried."""


class LinkNotFoundError(LinkValidationError):
    """No secure link exists for the given token."""


class LinkExpiredError(LinkValidationError):
    """Partner-owned secure link is past its expiry."""


class MissingFieldError(LinkValidationError):
    """Required input is missing or malformed."""


class FieldCipherError(LinkVaultError):
    """Field cipher failure."""


class DecryptionError(FieldCipherError):
    """Ciphertext could not be decrypted with the configured keys."""


class IssuanceError(LinkVaultError):
    """Storage failure while inserting a batch of links."""


class DuplicateEventError(LinkVaultError):
    """Gateway event was already processed."""


class InsufficientInventoryError(LinkVaultError):
    """Partner does not hold enough unsold links for a sale."""


class PartnerExistsError(LinkVaultError):
    """A partner with the same email is already registered."""


class AuthError(LinkVaultError):
    """Missing or invalid partner credentials."""


class WebhookSignatureError(LinkVaultError):
    """Payment gateway webhook payload or signature is invalid."""
