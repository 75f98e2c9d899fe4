"""Error taxonomy for the Maturion assessment service.

Only structurally invalid input and unreachable collaborators are modelled as
exceptions. Degraded retrieval and missing internal documentation are
non-fatal and travel as flags on the provenance metadata instead.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable machine-readable error codes returned in API error bodies."""

    NOT_FOUND = "not_found"
    INVALID_SCORING_INPUT = "invalid_scoring_input"
    COLLABORATOR_UNAVAILABLE = "collaborator_unavailable"


class MaturionError(Exception):
    """Base class for all service errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code.
        details: Optional structured details for the API error body.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(MaturionError):
    """Raised when a requested domain or record does not exist for the organization."""

    status_code = 404

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.NOT_FOUND, details)


class ScoringValidationError(MaturionError, ValueError):
    """Raised when scoring input is malformed or out of range.

    No partial score is ever produced alongside this error.

    Attributes:
        errors: Every validation problem found in the input, in input order.
    """

    status_code = 422

    def __init__(self, errors: list[str]) -> None:
        super().__init__(
            f"Invalid scoring input: {'; '.join(errors)}",
            ErrorCode.INVALID_SCORING_INPUT,
            {"errors": list(errors)},
        )
        self.errors = list(errors)


class CollaboratorUnavailableError(MaturionError):
    """Raised when the embedding, search, or language-model collaborator is unreachable.

    Attributes:
        collaborator: Name of the collaborator that failed (e.g. 'language_model').
    """

    status_code = 503

    def __init__(self, collaborator: str, message: str) -> None:
        super().__init__(
            message,
            ErrorCode.COLLABORATOR_UNAVAILABLE,
            {"collaborator": collaborator},
        )
        self.collaborator = collaborator
