from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from django.db import transaction
from rest_framework.exceptions import ValidationError

from apps.common.clock import Clock, system_clock

from .. import timing
from ..exceptions import GradingDeniedError
from ..models import Answer, Assessment, AssessmentAssignment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GradingDecision:
    allowed: bool
    reason: str
    warning: str | None = None


class GradingAccessGuard:
    """
    Decides whether a teacher may open or write the grade of a session.

    A session that has not been submitted is only gradeable once the
    assessment is over; until then it may still be live and grading it would
    expose its content.
    """

    SUBMITTED = "submitted"
    NOT_SUBMITTED_ASSESSMENT_ENDED = "not_submitted_assessment_ended"
    SESSION_STILL_ACTIVE = "session_still_active"
    GRADING_WITHOUT_SUBMISSION = "grading_without_submission"

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or system_clock

    def check(
        self,
        session: AssessmentAssignment,
        assessment: Assessment,
        now: datetime | None = None,
    ) -> GradingDecision:
        if session.submitted_at is not None:
            return GradingDecision(True, self.SUBMITTED)

        now = now or self.clock.now()
        if timing.has_assessment_ended(assessment, now):
            return GradingDecision(
                True,
                self.NOT_SUBMITTED_ASSESSMENT_ENDED,
                warning=self.GRADING_WITHOUT_SUBMISSION,
            )
        return GradingDecision(False, self.SESSION_STILL_ACTIVE)

    def ensure_allowed(
        self,
        session: AssessmentAssignment,
        assessment: Assessment,
        now: datetime | None = None,
    ) -> GradingDecision:
        decision = self.check(session, assessment, now)
        if not decision.allowed:
            raise GradingDeniedError(
                "This session is still in progress and cannot be graded yet.",
                reason=decision.reason,
            )
        return decision


class GradingService:
    """Manual grade write path; the access guard is re-evaluated at write time."""

    def __init__(self, clock: Clock | None = None, guard: GradingAccessGuard | None = None):
        self.clock = clock or system_clock
        self.guard = guard or GradingAccessGuard(clock=self.clock)

    @staticmethod
    def _validate_scores(answers: dict[str, Answer], scores: Mapping[str, Mapping[str, Any]]) -> None:
        errors: dict[str, str] = {}
        for question_id, entry in scores.items():
            answer = answers.get(str(question_id))
            if answer is None:
                errors[str(question_id)] = "No answer was recorded for this question."
                continue
            score = entry.get("score")
            if score is None:
                continue
            if Decimal(score) < 0 or Decimal(score) > answer.question.points:
                errors[str(question_id)] = f"Score must be between 0 and {answer.question.points}."
        if errors:
            raise ValidationError({"scores": errors})

    def save_grade(
        self,
        session: AssessmentAssignment,
        assessment: Assessment,
        scores: Mapping[str, Mapping[str, Any]] | None = None,
        teacher_notes: str | None = None,
    ) -> AssessmentAssignment:
        """
        Persist per-answer scores/feedback and the session total.

        `scores` maps question id -> {"score": Decimal | None, "feedback": str | None}.
        Answer rows are never created here, so an absentee ends up graded at 0.
        """
        scores = scores or {}
        with transaction.atomic():
            locked = AssessmentAssignment.objects.select_for_update().get(pk=session.pk)
            now = self.clock.now()
            try:
                decision = self.guard.ensure_allowed(locked, assessment, now)
            except GradingDeniedError:
                logger.info(
                    "Grade write refused for live session",
                    extra={"assignment_id": str(locked.id), "assessment_id": str(assessment.id)},
                )
                raise

            answers = {str(a.question_id): a for a in locked.answers.select_related("question")}
            self._validate_scores(answers, scores)

            changed: list[Answer] = []
            for question_id, entry in scores.items():
                answer = answers[str(question_id)]
                if "score" in entry:
                    answer.score = entry["score"]
                if "feedback" in entry:
                    answer.feedback = entry["feedback"]
                changed.append(answer)
            if changed:
                Answer.objects.bulk_update(changed, ["score", "feedback"])

            total = sum((Decimal(a.score) for a in answers.values() if a.score is not None), Decimal("0"))
            locked.score = total
            locked.teacher_notes = teacher_notes
            locked.graded_at = now
            locked.save(update_fields=["score", "teacher_notes", "graded_at", "updated_at"])

        if decision.warning:
            logger.info(
                "Session graded without submission",
                extra={"assignment_id": str(locked.id), "assessment_id": str(assessment.id)},
            )
        session.refresh_from_db()
        return session
