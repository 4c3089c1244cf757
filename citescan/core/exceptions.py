"""
Exception hierarchy for the CiteScan engine.

Collaborator adapters raise these; step executors translate them into
tagged step results so nothing crosses the pipeline controller boundary.
"""

from typing import Any

from citescan.core.models import FailureKind


class CiteScanError(Exception):
    """Base exception for all engine errors."""

    code = "citescan_error"
    failure_kind = FailureKind.UNKNOWN

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# =============================================================================
# Transient collaborator failures (retried with backoff)
# =============================================================================


class CollaboratorError(CiteScanError):
    """An external collaborator failed in a way that may succeed later."""

    code = "collaborator_error"
    failure_kind = FailureKind.TRANSIENT


class CollaboratorTimeoutError(CollaboratorError):
    code = "collaborator_timeout"


class RateLimitedError(CollaboratorError):
    code = "rate_limited"

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.retry_after = retry_after


class MalformedResponseError(CollaboratorError):
    """The analysis collaborator returned missing or unparseable judgments."""

    code = "malformed_response"


# =============================================================================
# Permanent input failures (never retried)
# =============================================================================


class PermanentInputError(CiteScanError):
    code = "permanent_input"
    failure_kind = FailureKind.PERMANENT


class DomainUnreachableError(PermanentInputError):
    """The project's domain does not resolve or refuses every connection."""

    code = "domain_unreachable"


class OutputSchemaError(CiteScanError):
    """A stored step output has an unknown version or shape."""

    code = "output_schema"


# =============================================================================
# API-facing errors
# =============================================================================


class ResourceNotFoundError(CiteScanError):
    code = "not_found"


class ConflictError(CiteScanError):
    code = "conflict"
