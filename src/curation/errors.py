"""Exception taxonomy for curation and ranking.

Only ExhaustedSignal and a Knowledge Store outage end a curation run; every
other error is isolated to the single query or candidate that raised it.
"""


class CurationError(Exception):
    """Base class for curation pipeline errors."""


class ExhaustedSignal(CurationError):
    """Raised when the external quota would be, or already is, exceeded.

    This is a pause, not a failure: callers stop issuing external calls for
    the rest of the run and report a partial summary.
    """

    def __init__(self, message: str = "quota exhausted", remaining: int = 0):
        super().__init__(message)
        self.remaining = remaining


class TransientExternalError(CurationError):
    """An external call kept failing (timeout, transport error, 5xx) after retries."""


class MalformedClassifierOutput(CurationError):
    """The content classifier returned something that is not a valid verdict."""


class DuplicateVideoError(CurationError):
    """The Knowledge Store already holds a record for this external video id."""

    def __init__(self, youtube_id: str):
        super().__init__(f"video {youtube_id} already exists")
        self.youtube_id = youtube_id


class ContractViolation(CurationError):
    """A verdict or record is missing data the next stage requires."""
