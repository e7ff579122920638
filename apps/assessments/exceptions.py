from __future__ import annotations

from rest_framework import status


class AssessmentLifecycleError(Exception):
    """
    A session lifecycle rule said no.

    These are expected outcomes, not faults: the DRF exception handler turns
    them into a typed `{"detail", "code", "reason"}` body the caller can
    branch on.
    """

    code = "lifecycle_error"
    default_message = "This action is not allowed on the session."
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str | None = None, *, reason: str | None = None):
        self.reason = reason
        super().__init__(message or self.default_message)


class AlreadySubmittedError(AssessmentLifecycleError):
    code = "already_submitted"
    default_message = "This session is already closed."


class SessionClosedError(AlreadySubmittedError):
    code = "session_closed"
    default_message = "Answers can no longer be changed for this session."


class AssessmentUnavailableError(AssessmentLifecycleError):
    code = "assessment_unavailable"
    default_message = "This assessment is not available."


class GradingDeniedError(AssessmentLifecycleError):
    code = "grading_denied"
    default_message = "This session cannot be graded yet."
    status_code = status.HTTP_403_FORBIDDEN


class ReassignmentNotAllowedError(AssessmentLifecycleError):
    code = "reassignment_not_allowed"
    default_message = "This session cannot be reassigned."

    MISSING_REASON = "missing_reason"
    HAS_RESPONSES = "has_responses"
    SUPERVISED_ALREADY_STARTED = "supervised_already_started"

    MESSAGES = {
        MISSING_REASON: "A reason is required to reassign a session.",
        HAS_RESPONSES: "The student has already recorded responses for this session.",
        SUPERVISED_ALREADY_STARTED: "The student has already started this supervised session.",
    }

    def __init__(self, reason: str):
        super().__init__(self.MESSAGES.get(reason), reason=reason)


class RowProcessingError(Exception):
    """One row of a scheduled sweep failed; the sweep logs it and moves on."""

    def __init__(self, worker: str, keys: dict, cause: BaseException):
        self.worker = worker
        self.keys = keys
        self.cause = cause
        super().__init__(f"{worker}: failed to process {keys}: {cause!r}")
