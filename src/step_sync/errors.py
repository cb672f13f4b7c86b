"""Error taxonomy shared by the ledger and the upload scheduler."""


class StepSyncError(Exception):
    """Base class for step-sync errors."""


class StepValidationError(StepSyncError):
    """Raised when a submission is missing fields or carries bad values."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class StorageError(StepSyncError):
    """Raised when the record store cannot be read or written."""


class NotFoundError(StepSyncError):
    """Raised when a query has nothing to return."""


class NetworkError(StepSyncError):
    """Raised when an outbound submission does not succeed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
