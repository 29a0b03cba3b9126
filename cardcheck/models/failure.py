"""
Known failures and their user-facing envelope.

Only a few failures are allowed to reach the user: the initial extraction
call failing, a missing or unconfigured extractor, and requests for
checklists that do not exist. Verification, confirmation and learning
never raise; they degrade to warnings and log entries instead.
"""

from enum import Enum

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    SERVICE_UNAVAILABLE = "service_unavailable"
    EXTERNAL_API_ERROR = "external_api_error"
    UNKNOWN = "unknown"


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )


class FailureResponse(BaseModel):
    """Body returned for any KnownError."""

    failure: FailureDetail


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> FailureResponse:
        """Convert to a response body."""
        return FailureResponse(
            failure=FailureDetail(
                kind=self.kind,
                message=self.message,
                detail=self.detail,
                suggestion=self.suggestion,
            )
        )


class ExtractionError(KnownError):
    """The vision scanner call failed or returned something unusable."""

    def __init__(self, detail: str):
        super().__init__(
            kind=FailureKind.EXTERNAL_API_ERROR,
            message="The card could not be read from the image.",
            detail=detail,
            suggestion="Retake the photo with the whole card in frame and try again.",
            status_code=502,
        )


class ExtractorUnavailableError(KnownError):
    """No scanner is configured."""

    def __init__(self) -> None:
        super().__init__(
            kind=FailureKind.SERVICE_UNAVAILABLE,
            message="Card scanning is not configured.",
            detail="CARDCHECK_ANTHROPIC_API_KEY is not set",
            suggestion="Set an API key in the environment or .env file.",
            status_code=503,
        )


class ChecklistNotFoundError(KnownError):
    """A checklist id did not match any stored checklist."""

    def __init__(self, checklist_id: int):
        self.checklist_id = checklist_id
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message="Checklist not found.",
            detail=f"No checklist with id {checklist_id}",
            status_code=404,
        )
