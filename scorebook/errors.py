class ScorebookError(Exception):
    """Base class for every error the scoring core raises."""
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(ScorebookError):
    """Input rejected before anything was written."""
    status_code = 400


class AuthenticationError(ScorebookError):
    status_code = 401


class NotFoundError(ScorebookError):
    status_code = 404


class ConflictError(ScorebookError):
    """A concurrent writer got there first. Re-read and retry, or give up."""
    status_code = 409


class StoreUnavailable(ScorebookError):
    """The entity store failed or timed out. Safe to retry, nothing was kept."""
    status_code = 503
