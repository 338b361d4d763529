"""Error taxonomy for the analysis pipeline.

The orchestrator classifies every failure into one of a small set of kinds.
Each kind is an exception class; the underlying cause is attached both as the
exception message (``"<kind>: <cause>"``) and as ``__cause__`` via
``raise Kind(err) from err``. Callers match on the class, never on text.
"""

from __future__ import annotations


class AnalysisError(Exception):
    """Base class for failures surfaced by the analyze use case."""

    kind = "analysis failed"

    def __init__(self, cause: object | None = None):
        self.cause = cause
        if cause is None or str(cause) == "":
            message = self.kind
        else:
            message = f"{self.kind}: {cause}"
        super().__init__(message)


class InvalidInputError(AnalysisError, ValueError):
    """Request failed pre-conditions. Nothing was written."""

    kind = "invalid input"


class TokenLookupFailedError(AnalysisError):
    """Infrastructure failure while fetching an OAuth token.

    A missing token is not a failure; see :class:`TokenNotFoundError`.
    """

    kind = "token lookup failed"


class CloneFailedError(AnalysisError):
    """Clone slot could not be acquired or the clone itself failed."""

    kind = "clone failed"


class ScanFailedError(AnalysisError):
    """The parser returned an error."""

    kind = "scan failed"


class SaveFailedError(AnalysisError):
    """A store write failed."""

    kind = "save failed"


class TokenNotFoundError(LookupError):
    """No OAuth token is stored for the (user, provider) pair.

    This is an expected condition (the user never connected the provider)
    and triggers anonymous access rather than a failure.
    """

    def __init__(self, message: str = "oauth token not found"):
        super().__init__(message)


class StoreError(Exception):
    """A relational store operation failed. The transaction was rolled back."""


class InvalidParamsError(StoreError, ValueError):
    """Store operation called with missing or malformed parameters."""


class AnalysisNotRunningError(StoreError):
    """Terminal transition attempted on an analysis that is not running."""


class PayloadDecodeError(ValueError):
    """A queue task payload could not be decoded."""
