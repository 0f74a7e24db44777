"""
auditorium.errors — Domain Error Taxonomy
==========================================

Services raise these; the API maps them onto HTTP status codes with a single
exception handler, and the client sync units translate them into
:class:`~auditorium.client.results.MutationResult` values.

* ``ConstraintViolation`` — a uniqueness rule rejected the write.  Callers
  treat it as "already done", never as a user-facing failure.
* everything else — a real failure: optimistic state is rolled back and the
  error is surfaced to the initiating action only.
"""

from __future__ import annotations


class AuditoriumError(Exception):
    """Base class for every error raised by the engagement core."""

    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        if code is not None:
            self.code = code

    @property
    def detail(self) -> str:
        return str(self)


class NotFoundError(AuditoriumError):
    """The referenced webinar, registration or row does not exist."""

    status_code = 404
    code = "not_found"


class InvalidInputError(AuditoriumError):
    """The payload failed validation."""

    status_code = 422
    code = "invalid_input"


class FeatureDisabledError(AuditoriumError):
    """The feature is switched off for this webinar or its current status."""

    status_code = 403
    code = "feature_disabled"


class AuthenticationError(AuditoriumError):
    """The bearer token is missing, malformed or expired."""

    status_code = 401
    code = "unauthorized"


class AuthorizationError(AuditoriumError):
    """The actor is not allowed to perform this action."""

    status_code = 403
    code = "forbidden"


class ConstraintViolation(AuditoriumError):
    """A uniqueness constraint rejected the write."""

    status_code = 409
    code = "conflict"


class DuplicateVoteError(ConstraintViolation):
    """This registrant already answered the poll."""

    code = "already_voted"


class DuplicateUpvoteError(ConstraintViolation):
    """This registrant already upvoted the question."""

    code = "already_upvoted"


class UpvoteNotFoundError(ConstraintViolation):
    """There is no upvote to remove."""

    code = "not_upvoted"


class WriteFailedError(AuditoriumError):
    """A client-side write could not be confirmed by the server."""

    status_code = 502
    code = "write_failed"


CONSTRAINT_ERRORS: dict[str, type[ConstraintViolation]] = {
    cls.code: cls
    for cls in (DuplicateVoteError, DuplicateUpvoteError, UpvoteNotFoundError)
}
