"""Domain-specific exceptions."""


class ServiceError(Exception):
    pass


class UserNotFoundError(ServiceError):
    pass


class QuotaExceededError(ServiceError):
    """Raised only by callers that opt into exception-style denials."""

    def __init__(self, resource_kind: str, limit: int) -> None:
        super().__init__(f"Monthly limit reached for {resource_kind}: {limit}.")
        self.resource_kind = resource_kind
        self.limit = limit


class DuplicateEventError(ServiceError):
    """Internal signal: the event id has already been applied."""


class TransientStorageError(ServiceError):
    """Retryable storage failure; no partial state was committed."""


class StorageUnavailableFatal(ServiceError):
    """The idempotency insert could not be made durable; the provider must redeliver."""


class ReconciliationValidationError(ServiceError):
    """Malformed or unrecognised event payload."""


class InvalidSignatureError(ServiceError):
    pass
