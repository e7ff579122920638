from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from django.conf import settings
from django.db import transaction

from apps.common.clock import Clock, system_clock

from .. import timing
from ..exceptions import AlreadySubmittedError, AssessmentUnavailableError, SessionClosedError
from ..models import Answer, Assessment, AssessmentAssignment, Question
from ..scoring import ScoringService

logger = logging.getLogger(__name__)


def _closed_reason(session: AssessmentAssignment) -> str:
    # an absentee can be graded after the window without ever submitting
    return "already_submitted" if session.submitted_at is not None else "already_graded"


class SessionLifecycle:
    """
    Start / answer / submit transitions of an assessment session.

    Every write that moves the session forward is a conditional UPDATE on the
    timestamp it sets (`started_at IS NULL`, `submitted_at IS NULL`), so
    duplicate requests and overlapping sweeps degrade into no-ops instead of
    overwriting each other. Callers pass already-authorized objects.
    """

    def __init__(self, clock: Clock | None = None, scoring: type[ScoringService] | ScoringService | None = None):
        self.clock = clock or system_clock
        self.scoring = scoring or ScoringService

    # ------------------------------------------------------------------
    # Creation / start
    # ------------------------------------------------------------------

    def get_or_create_session(self, assessment: Assessment, student) -> AssessmentAssignment:
        session, created = AssessmentAssignment.objects.get_or_create(assessment=assessment, student=student)
        if created:
            logger.debug(
                "Assessment session created",
                extra={"assessment_id": str(assessment.id), "student_id": student.pk},
            )
        return session

    def start(self, session: AssessmentAssignment, assessment: Assessment | None = None) -> AssessmentAssignment:
        """Stamp `started_at` once. Re-entering a started session is a no-op."""
        assessment = assessment or session.assessment
        if session.status != AssessmentAssignment.Status.NOT_SUBMITTED:
            raise AlreadySubmittedError(reason=_closed_reason(session))
        if session.started_at is not None:
            return session

        now = self.clock.now()
        availability = timing.availability(assessment, now)
        if not availability.available:
            raise AssessmentUnavailableError(reason=availability.reason)

        AssessmentAssignment.objects.filter(
            pk=session.pk,
            started_at__isnull=True,
            submitted_at__isnull=True,
            graded_at__isnull=True,
        ).update(started_at=now, updated_at=now)
        session.refresh_from_db()

        if session.status != AssessmentAssignment.Status.NOT_SUBMITTED:
            # lost the race against a submit or a grade
            raise AlreadySubmittedError(reason=_closed_reason(session))
        return session

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def save_answer(self, session: AssessmentAssignment, question: Question, payload: Any) -> Answer:
        if question.assessment_id != session.assessment_id:
            raise ValueError("Question does not belong to this assessment.")

        with transaction.atomic():
            locked = (
                AssessmentAssignment.objects.select_for_update()
                .select_related("assessment")
                .get(pk=session.pk)
            )
            if locked.status != AssessmentAssignment.Status.NOT_SUBMITTED:
                raise SessionClosedError(reason=_closed_reason(locked))

            grace = settings.ASSESSMENT_GRACE_PERIOD_SECONDS
            if timing.is_personal_time_expired(locked, locked.assessment, self.clock.now(), grace):
                raise SessionClosedError(
                    "Time for this assessment has run out.",
                    reason=AssessmentAssignment.TIME_EXPIRED,
                )

            answer, _ = Answer.objects.update_or_create(
                assignment=locked,
                question=question,
                defaults={"payload": payload, "score": None},
            )
        return answer

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        session: AssessmentAssignment,
        *,
        auto_score: Decimal,
        requires_manual_review: bool,
        forced: bool = False,
        violation_code: str | None = None,
        submitted_at: datetime | None = None,
    ) -> bool:
        """
        Close the session. Returns False when it was already submitted or graded.

        `score` always receives the auto-correctable total; `graded_at` is set
        only when nothing is left for a teacher to mark.
        """
        now = self.clock.now()
        fields: dict[str, Any] = {
            "submitted_at": submitted_at or now,
            "score": auto_score,
            "updated_at": now,
        }
        if forced:
            fields["forced_submission"] = True
            fields["security_violation"] = violation_code
        if not requires_manual_review:
            fields["graded_at"] = now

        updated = AssessmentAssignment.objects.filter(
            pk=session.pk, submitted_at__isnull=True, graded_at__isnull=True
        ).update(**fields)
        session.refresh_from_db()
        return updated == 1

    def _submit_locked(
        self,
        session: AssessmentAssignment,
        assessment: Assessment,
        *,
        requires_manual_review: bool | None = None,
        forced: bool = False,
        violation_code: str | None = None,
        submitted_at: datetime | None = None,
    ) -> bool:
        # Row lock so no answer lands between scoring and the submitted_at write.
        with transaction.atomic():
            locked = AssessmentAssignment.objects.select_for_update().get(pk=session.pk)
            if locked.status != AssessmentAssignment.Status.NOT_SUBMITTED:
                session.refresh_from_db()
                return False
            auto_score = self.scoring.auto_score(locked)
            if requires_manual_review is None:
                requires_manual_review = self.scoring.requires_manual_review(assessment)
            return self.submit(
                session,
                auto_score=auto_score,
                requires_manual_review=requires_manual_review,
                forced=forced,
                violation_code=violation_code,
                submitted_at=submitted_at,
            )

    def submit_by_student(self, session: AssessmentAssignment, assessment: Assessment | None = None) -> bool:
        assessment = assessment or session.assessment
        return self._submit_locked(session, assessment)

    def submit_for_violation(
        self,
        session: AssessmentAssignment,
        assessment: Assessment,
        violation_type: str,
        details: str | None = None,
    ) -> bool:
        """Proctoring termination; only supervised sessions can be terminated."""
        if assessment.delivery_mode != Assessment.DeliveryMode.SUPERVISED:
            return False

        code = f"{violation_type}: {details}" if details else violation_type
        submitted = self._submit_locked(session, assessment, forced=True, violation_code=code)
        if submitted:
            logger.info(
                "Assessment session terminated for violation",
                extra={
                    "assignment_id": str(session.id),
                    "assessment_id": str(assessment.id),
                    "student_id": session.student_id,
                    "violation": code,
                },
            )
        return submitted

    def should_auto_submit(self, session: AssessmentAssignment, assessment: Assessment, now: datetime) -> bool:
        if session.status != AssessmentAssignment.Status.NOT_SUBMITTED or session.started_at is None:
            return False
        return timing.is_personal_time_expired(session, assessment, now) or timing.has_assessment_ended(
            assessment, now
        )

    def submit_expired(
        self,
        session: AssessmentAssignment,
        assessment: Assessment,
        *,
        dry_run: bool = False,
    ) -> bool:
        """
        Forced `time_expired` submission stamped at the effective deadline.

        Used by the expiry sweep; returns whether the session was (or, in a dry
        run, would have been) submitted by this call.
        """
        now = self.clock.now()
        if not self.should_auto_submit(session, assessment, now):
            return False
        if dry_run:
            return True

        submitted = self._submit_locked(
            session,
            assessment,
            requires_manual_review=False,
            forced=True,
            violation_code=AssessmentAssignment.TIME_EXPIRED,
            submitted_at=timing.effective_deadline(session, assessment, now),
        )
        if submitted:
            logger.info(
                "Assessment session auto-submitted",
                extra={
                    "assignment_id": str(session.id),
                    "assessment_id": str(assessment.id),
                    "student_id": session.student_id,
                    "submitted_at": session.submitted_at.isoformat(),
                },
            )
        return submitted

    def submit_if_expired(self, session: AssessmentAssignment, assessment: Assessment | None = None) -> bool:
        """On-access check: close a supervised session whose personal time ran out."""
        assessment = assessment or session.assessment
        if session.status != AssessmentAssignment.Status.NOT_SUBMITTED:
            return False
        now = self.clock.now()
        grace = settings.ASSESSMENT_GRACE_PERIOD_SECONDS
        if not timing.is_personal_time_expired(session, assessment, now, grace):
            return False
        return self._submit_locked(
            session,
            assessment,
            forced=True,
            violation_code=AssessmentAssignment.TIME_EXPIRED,
            submitted_at=timing.effective_deadline(session, assessment, now),
        )
