"""Custom exceptions for the Holter explorer."""


class ExplorerException(Exception):
    """Base exception for the Holter explorer."""
    pass


class QueryServiceError(ExplorerException):
    """Raised when an aggregation or downsampling query fails (transport, HTTP status or payload shape)."""

    def __init__(self, message: str, function: str = "", status_code: int = 0):
        super().__init__(message)
        self.function = function
        self.status_code = status_code


class MalformedRowError(ExplorerException):
    """Raised when a single row returned by a query cannot be normalized."""
    pass


class InvalidSelectionError(ExplorerException):
    """Raised when a user selection does not fit the current drill-down state."""
    pass


class SelectionDisabledError(InvalidSelectionError):
    """Raised when dragging on a level that has no data (loading, empty or failed)."""
    pass


class InvalidWindowError(ExplorerException):
    """Raised when a time window is empty, inverted or too long."""
    pass


class SessionNotFoundError(ExplorerException):
    """Explorer session does not exist or has been closed."""
    pass
