GENERIC_STORE_ERROR = "An unexpected error occurred"


class DecisionError(Exception):
    """Base class for underwriting decision failures."""


class DecisionValidationError(DecisionError):
    """Input rejected before anything is sent to the store."""


class DecisionNotFoundError(DecisionError):
    pass


class DecisionStoreError(DecisionError):
    """Non-2xx response or transport failure talking to the decision store."""

    def __init__(self, message: str = GENERIC_STORE_ERROR, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class DecisionConflictError(DecisionStoreError):
    """The record changed since it was read; re-fetch and recompute before retrying."""

    def __init__(self, message: str = "Decision was modified by another request"):
        super().__init__(message, status_code=409)
