from __future__ import annotations

import logging

from django.db import transaction

from ..exceptions import ReassignmentNotAllowedError
from ..models import Assessment, AssessmentAssignment

logger = logging.getLogger(__name__)


class ReassignmentService:
    """
    Give a student a fresh attempt by resetting their session in place.

    Only untouched sessions qualify: any recorded answer blocks it, and a
    supervised session that was already opened has exposed its questions.
    """

    @staticmethod
    def check(session: AssessmentAssignment, assessment: Assessment) -> str | None:
        """Reason the session cannot be reassigned, or None."""
        if session.answers.exists():
            return ReassignmentNotAllowedError.HAS_RESPONSES
        if assessment.delivery_mode == Assessment.DeliveryMode.SUPERVISED and session.started_at is not None:
            return ReassignmentNotAllowedError.SUPERVISED_ALREADY_STARTED
        return None

    @staticmethod
    def reassign(
        session: AssessmentAssignment,
        assessment: Assessment,
        reason: str | None,
        *,
        actor=None,
    ) -> AssessmentAssignment:
        if not (reason or "").strip():
            raise ReassignmentNotAllowedError(ReassignmentNotAllowedError.MISSING_REASON)

        with transaction.atomic():
            locked = AssessmentAssignment.objects.select_for_update().get(pk=session.pk)
            blocked = ReassignmentService.check(locked, assessment)
            if blocked:
                raise ReassignmentNotAllowedError(blocked)

            # A reset session never carries answers.
            locked.answers.all().delete()

            locked.started_at = None
            locked.submitted_at = None
            locked.graded_at = None
            locked.score = None
            locked.forced_submission = False
            locked.security_violation = None
            locked.teacher_notes = None
            locked.save(
                update_fields=[
                    "started_at",
                    "submitted_at",
                    "graded_at",
                    "score",
                    "forced_submission",
                    "security_violation",
                    "teacher_notes",
                    "updated_at",
                ]
            )

        logger.info(
            "Assignment reassigned by teacher",
            extra={
                "assignment_id": str(locked.id),
                "assessment_id": str(assessment.id),
                "student_id": locked.student_id,
                "teacher_id": getattr(actor, "pk", None),
                "delivery_mode": assessment.delivery_mode,
                "reason": reason,
            },
        )
        session.refresh_from_db()
        return session
