from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from rest_framework.exceptions import ValidationError

from apps.assessments.exceptions import GradingDeniedError
from apps.assessments.models import Question
from apps.assessments.services import GradingAccessGuard, GradingService
from apps.common.clock import FrozenClock

from .factories import (
    at,
    make_answer,
    make_course,
    make_homework,
    make_question,
    make_session,
    make_supervised,
    make_user,
)


class GradingAccessGuardTests(TestCase):
    def setUp(self):
        self.now = at(14)
        self.guard = GradingAccessGuard(clock=FrozenClock(self.now))
        self.course = make_course()
        self.student = make_user()

    def _live_supervised(self, started_ago: timedelta):
        started_at = self.now - started_ago
        assessment = make_supervised(self.course, scheduled_at=started_at, duration_minutes=120)
        return assessment, make_session(assessment, self.student, started_at=started_at)

    def test_denies_live_supervised_session(self):
        assessment, session = self._live_supervised(timedelta(minutes=5))
        decision = self.guard.check(session, assessment)
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.reason, "session_still_active")

    def test_allows_unsubmitted_session_once_assessment_ended(self):
        assessment, session = self._live_supervised(timedelta(hours=3))
        decision = self.guard.check(session, assessment)
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.reason, "not_submitted_assessment_ended")
        self.assertEqual(decision.warning, "grading_without_submission")

    def test_always_allows_submitted_session(self):
        assessment, session = self._live_supervised(timedelta(minutes=5))
        session.submitted_at = self.now - timedelta(minutes=1)
        decision = self.guard.check(session, assessment)
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.reason, "submitted")
        self.assertIsNone(decision.warning)

    def test_homework_without_due_date_is_never_gradeable_unsubmitted(self):
        assessment = make_homework(self.course, due_date=None)
        session = make_session(assessment, self.student)
        self.assertFalse(self.guard.check(session, assessment, now=at(23, day=31)).allowed)

    def test_explicit_now_overrides_clock(self):
        assessment, session = self._live_supervised(timedelta(minutes=5))
        self.assertTrue(self.guard.check(session, assessment, now=self.now + timedelta(hours=3)).allowed)

    def test_ensure_allowed_raises_typed_error(self):
        assessment, session = self._live_supervised(timedelta(minutes=5))
        with self.assertRaises(GradingDeniedError) as ctx:
            self.guard.ensure_allowed(session, assessment)
        self.assertEqual(ctx.exception.reason, "session_still_active")
        self.assertEqual(ctx.exception.status_code, 403)


class GradingServiceTests(TestCase):
    def setUp(self):
        self.clock = FrozenClock(at(14))
        self.service = GradingService(clock=self.clock)
        self.course = make_course()
        self.student = make_user()
        self.assessment = make_supervised(self.course, scheduled_at=at(10), duration_minutes=60)
        self.q_choice = make_question(self.assessment, Question.QuestionType.ONE_CHOICE, points=2)
        self.q_text = make_question(self.assessment, Question.QuestionType.TEXT, points=5)

    def test_manual_grade_totals_answer_scores(self):
        session = make_session(
            self.assessment, self.student, started_at=at(10), submitted_at=at(10, 50), score=Decimal("2")
        )
        make_answer(session, self.q_choice, 1, score=Decimal("2"))
        make_answer(session, self.q_text, "essay")

        self.service.save_grade(
            session,
            self.assessment,
            scores={str(self.q_text.id): {"score": Decimal("3.5"), "feedback": "Good structure"}},
            teacher_notes="Solid work",
        )

        self.assertEqual(session.score, Decimal("5.50"))
        self.assertEqual(session.graded_at, at(14))
        self.assertEqual(session.teacher_notes, "Solid work")
        text_answer = session.answers.get(question=self.q_text)
        self.assertEqual(text_answer.score, Decimal("3.50"))
        self.assertEqual(text_answer.feedback, "Good structure")

    def test_absentee_is_graded_zero(self):
        session = make_session(self.assessment, self.student)
        self.service.save_grade(session, self.assessment, teacher_notes="Absent")
        self.assertEqual(session.score, Decimal("0"))
        self.assertIsNotNone(session.graded_at)
        self.assertFalse(session.answers.exists())

    def test_write_is_rechecked_against_live_session(self):
        self.clock.set(at(10, 30))
        session = make_session(self.assessment, self.student, started_at=at(10, 5))

        with self.assertRaises(GradingDeniedError):
            self.service.save_grade(session, self.assessment, teacher_notes="too early")

        session.refresh_from_db()
        self.assertIsNone(session.graded_at)
        self.assertIsNone(session.teacher_notes)

    def test_score_above_points_is_rejected(self):
        session = make_session(self.assessment, self.student, started_at=at(10), submitted_at=at(10, 50))
        make_answer(session, self.q_text, "essay")
        with self.assertRaises(ValidationError):
            self.service.save_grade(session, self.assessment, scores={str(self.q_text.id): {"score": Decimal("6")}})
        session.refresh_from_db()
        self.assertIsNone(session.graded_at)

    def test_score_for_unanswered_question_is_rejected(self):
        session = make_session(self.assessment, self.student, started_at=at(10), submitted_at=at(10, 50))
        with self.assertRaises(ValidationError):
            self.service.save_grade(session, self.assessment, scores={str(self.q_text.id): {"score": Decimal("1")}})
