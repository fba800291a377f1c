"""Domain exceptions.

None of these cross the HTTP boundary: the generation flow and the tracker
turn them into result values or log lines.
"""


class GovernanceError(Exception):
    """Base class for request-governance errors."""


class CompletionError(GovernanceError):
    """The external completion service failed or returned unusable output."""


class TransportError(GovernanceError):
    """A tracking batch could not be delivered."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
