"""Custom exception hierarchy for isp-billing."""


class BillingError(Exception):
    """Base exception for all billing engine errors."""


class EntityNotFoundError(BillingError):
    """Raised when a referenced entity does not exist."""


class ReferentialIntegrityError(EntityNotFoundError):
    """Raised when a foreign key reference is violated."""


class BillingValidationError(BillingError):
    """Raised when a request is rejected before any write happens."""


class PersistenceError(BillingError):
    """Raised when a storage write fails."""


class ConcurrentModificationError(PersistenceError):
    """Raised when a row changed between read and write."""


class NotificationError(BillingError):
    """Raised when a notification cannot be delivered."""


class ConfigurationError(BillingError):
    """Raised when configuration is invalid or missing."""
