"""Custom exception classes for npmsync."""


class NpmSyncError(Exception):
    """Base exception for npmsync."""

    def __init__(self, code: str, message: str, details=None, status_code: int = 500):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class ValidationError(NpmSyncError):
    """Request validation failure."""

    def __init__(self, message: str, details=None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)


class NotFoundError(NpmSyncError):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            status_code=404,
        )


class AuthenticationError(NpmSyncError):
    """Caller identity missing or invalid."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__("AUTHENTICATION_ERROR", message, status_code=401)


class AuthorizationError(NpmSyncError):
    """Operator credentials missing or wrong."""

    def __init__(self, message: str = "Operator access required"):
        super().__init__("AUTHORIZATION_ERROR", message, status_code=403)


class ConflictError(NpmSyncError):
    """Coordination state conflict (e.g. starting a running backfill)."""

    def __init__(self, message: str, details=None):
        super().__init__("CONFLICT", message, details, status_code=409)


class UpstreamError(NpmSyncError):
    """An upstream dependency failed with no safe fallback."""

    def __init__(self, code: str, message: str, details=None):
        super().__init__(code, message, details, status_code=502)


class ChangeFeedExhaustedError(UpstreamError):
    """The change feed could not be reached within the retry budget."""

    def __init__(self, cursor: int, attempts: int, reason: str):
        super().__init__(
            "CHANGE_FEED_EXHAUSTED",
            f"Change feed unavailable after {attempts} attempts: {reason}",
            details={"cursor": cursor, "attempts": attempts},
        )
        self.cursor = cursor


class ListingFetchError(UpstreamError):
    """A page of the full registry listing could not be fetched."""

    def __init__(self, start_key: str | None, reason: str):
        super().__init__(
            "LISTING_FETCH_FAILED",
            f"Failed to fetch registry listing page: {reason}",
            details={"start_key": start_key},
        )
        self.start_key = start_key


class SearchIndexError(UpstreamError):
    """The search index rejected or failed an operation."""

    def __init__(self, message: str, transient: bool = True):
        super().__init__("SEARCH_INDEX_ERROR", message)
        self.transient = transient
