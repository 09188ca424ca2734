"""Exception hierarchy for the sync engine."""


class SyncEngineError(Exception):
    """Base class for all sync engine errors."""


class ValidationError(SyncEngineError):
    """Raised synchronously when a job submission or option is invalid."""


class UnsupportedEntityType(SyncEngineError):
    """Raised when no provider or operation exists for an entity type."""

    def __init__(self, entity_type: str):
        super().__init__(f"Unsupported entity type: {entity_type}")
        self.entity_type = entity_type


class JobAlreadyRegistered(SyncEngineError):
    """Raised when a second cancellation token is registered for a job."""


class VectorBackendUnavailable(SyncEngineError):
    """Raised when vector similarity cannot be computed."""


class ItemSkipped(SyncEngineError):
    """
    Raised by an item operation to skip an item.

    Skipped items count neither as processed nor as errors.
    """
