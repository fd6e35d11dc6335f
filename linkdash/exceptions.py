"""Exception hierarchy for linkdash."""


class LinkDashError(Exception):
    """Base exception for all linkdash errors."""


class ConfigurationError(LinkDashError):
    """Raised when configuration is invalid or missing."""


class ShapeError(LinkDashError):
    """Payload matched no recognized shape. Recorded as a warning, never raised out of normalization."""

    def __init__(self, message: str, kind=None, payload=None):
        super().__init__(message)
        self.kind = kind
        self.payload = payload


class IdentityMissingError(LinkDashError):
    """Raised when a record has no resolvable primary identifier."""

    def __init__(self, message: str, kind=None, record=None):
        super().__init__(message)
        self.kind = kind
        self.record = record


class TransportError(LinkDashError):
    """Raised when the upstream call itself failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(TransportError):
    """Raised when the upstream answered 404."""


class SelectionRejected(LinkDashError):
    """Raised when a navigation transition is refused."""

    def __init__(self, message: str, record=None):
        super().__init__(message)
        self.record = record


class InvalidTransitionError(SelectionRejected):
    """Raised when a transition is not valid from the current navigation level."""


class SessionFailedError(LinkDashError):
    """Raised when a linking session reported an error instead of a connection."""

    def __init__(self, message: str, partial_connection_id: str | None = None):
        super().__init__(message)
        self.partial_connection_id = partial_connection_id


class PersistenceError(LinkDashError):
    """Raised when a mirror store operation fails."""


class DeletionFailedError(LinkDashError):
    """Raised when a cascading delete fails. Nothing was removed."""
