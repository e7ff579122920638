from __future__ import annotations

from decimal import Decimal
from typing import Any

from .models import Answer, Assessment, AssessmentAssignment, Question

ZERO = Decimal("0")


class ScoringService:
    """
    Auto-correction of recorded answers.

    Choice and true/false questions are marked by exact comparison against
    `Question.correct_answer`; free-text questions are left for the teacher.
    """

    @staticmethod
    def _is_correct(question: Question, payload: Any) -> bool:
        expected = question.correct_answer
        if payload is None or expected is None:
            return False

        q_type = question.question_type
        if q_type == Question.QuestionType.MULTIPLE:
            if not isinstance(payload, list) or not isinstance(expected, list):
                return False
            return {str(v) for v in payload} == {str(v) for v in expected}
        if q_type == Question.QuestionType.BOOLEAN:
            return isinstance(payload, bool) and payload == bool(expected)
        return str(payload) == str(expected)

    @staticmethod
    def score_answer(question: Question, answer: Answer) -> Decimal | None:
        """Points earned by one answer, or None when it needs a human."""
        if question.requires_manual_grading:
            return None
        if ScoringService._is_correct(question, answer.payload):
            return Decimal(question.points)
        return ZERO

    @staticmethod
    def requires_manual_review(assessment: Assessment) -> bool:
        return assessment.requires_manual_review

    @staticmethod
    def auto_score(assignment: AssessmentAssignment, *, persist: bool = True) -> Decimal:
        """
        Total of the auto-correctable answers of a session.

        With `persist`, each auto-marked answer also gets its `score` written.
        Answers to text questions keep whatever score they had.
        """
        answers = list(assignment.answers.select_related("question"))
        total = ZERO
        changed: list[Answer] = []
        for answer in answers:
            points = ScoringService.score_answer(answer.question, answer)
            if points is None:
                continue
            total += points
            if answer.score != points:
                answer.score = points
                changed.append(answer)

        if persist and changed:
            Answer.objects.bulk_update(changed, ["score"])
        return total
