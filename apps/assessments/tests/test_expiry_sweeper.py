from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import OperationalError
from django.test import TestCase
from django.utils import timezone

from apps.assessments import workers
from apps.assessments.models import AssessmentAssignment, Question
from apps.assessments.services import GradingService, SessionLifecycle
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


class AutoSubmitExpiredTests(TestCase):
    def setUp(self):
        self.course = make_course()
        self.student = make_user()
        self.assessment = make_supervised(self.course, scheduled_at=at(10), duration_minutes=60)

    def sweep(self, now, **kwargs):
        return workers.auto_submit_expired(clock=FrozenClock(now), **kwargs)

    def test_no_expiry_before_time(self):
        session = make_session(self.assessment, self.student, started_at=at(10))

        report = self.sweep(at(10, 59))

        session.refresh_from_db()
        self.assertIsNone(session.submitted_at)
        self.assertEqual((report.processed, report.acted, report.skipped), (1, 0, 1))

    def test_expires_after_personal_deadline(self):
        session = make_session(self.assessment, self.student, started_at=at(10))

        report = self.sweep(at(11, 1))

        session.refresh_from_db()
        self.assertEqual(report.acted, 1)
        self.assertEqual(session.submitted_at, at(11))
        self.assertTrue(session.forced_submission)
        self.assertEqual(session.security_violation, "time_expired")
        self.assertEqual(session.status, AssessmentAssignment.Status.GRADED)

    def test_end_to_end_late_starter(self):
        # Window 10:00-11:00; the student opens it at 10:10 and never submits.
        session = make_session(self.assessment, self.student, started_at=at(10, 10))

        report = self.sweep(at(10, 5))
        session.refresh_from_db()
        self.assertIsNone(session.submitted_at)
        self.assertEqual(report.skipped, 1)

        report = self.sweep(at(11, 15))
        session.refresh_from_db()
        self.assertEqual(report.acted, 1)
        self.assertEqual(session.submitted_at, at(11, 10))
        self.assertEqual(session.security_violation, "time_expired")

    def test_closed_window_submits_before_personal_deadline(self):
        # Own hour runs to 11:10 but the window closed at 11:00, so the 11:05 run
        # submits (own time up OR window closed), unlike a skip-until-11:10 reading.
        # Stamped at the sweep instant, never later.
        session = make_session(self.assessment, self.student, started_at=at(10, 10))

        self.sweep(at(11, 5))

        session.refresh_from_db()
        self.assertEqual(session.submitted_at, at(11, 5))
        self.assertTrue(session.forced_submission)

    def test_scores_recorded_answers(self):
        question = make_question(self.assessment, Question.QuestionType.ONE_CHOICE, points=4)
        text = make_question(self.assessment, Question.QuestionType.TEXT, points=6)
        session = make_session(self.assessment, self.student, started_at=at(10))
        make_answer(session, question, 1)
        make_answer(session, text, "unfinished")

        self.sweep(at(11, 30))

        session.refresh_from_db()
        self.assertEqual(session.score, Decimal("4.00"))
        self.assertIsNotNone(session.graded_at)

    def test_second_run_is_a_no_op(self):
        session = make_session(self.assessment, self.student, started_at=at(10))
        self.sweep(at(11, 30))
        session.refresh_from_db()
        first = session.submitted_at

        report = self.sweep(at(12))

        session.refresh_from_db()
        self.assertEqual(report.processed, 0)
        self.assertEqual(session.submitted_at, first)

    def test_ignores_rows_outside_scope(self):
        homework = make_homework(self.course, due_date=at(9))
        unpublished = make_supervised(self.course, scheduled_at=at(10), duration_minutes=60, is_published=False)
        make_session(homework, self.student, started_at=at(8))
        make_session(unpublished, self.student, started_at=at(10))
        make_session(self.assessment, make_user())
        make_session(self.assessment, make_user(), started_at=at(10), submitted_at=at(10, 30))

        report = self.sweep(at(12))

        self.assertEqual(report.processed, 0)
        self.assertEqual(AssessmentAssignment.objects.filter(submitted_at__isnull=False).count(), 1)

    def test_dry_run_writes_nothing(self):
        session = make_session(self.assessment, self.student, started_at=at(10))

        report = self.sweep(at(11, 30), dry_run=True)

        session.refresh_from_db()
        self.assertIsNone(session.submitted_at)
        self.assertEqual(report.acted, 1)
        self.assertTrue(report.dry_run)

    def test_streams_in_chunks(self):
        for _ in range(5):
            make_session(self.assessment, make_user(), started_at=at(10))

        report = self.sweep(at(11, 30), chunk_size=2)

        self.assertEqual((report.processed, report.acted), (5, 5))
        self.assertFalse(AssessmentAssignment.objects.filter(submitted_at__isnull=True).exists())

    def test_row_failure_is_logged_and_skipped(self):
        broken = make_session(self.assessment, self.student, started_at=at(10))
        healthy = make_session(self.assessment, make_user(), started_at=at(10))
        original = SessionLifecycle.submit_expired

        def flaky(lifecycle, session, assessment, **kwargs):
            if session.pk == broken.pk:
                raise RuntimeError("corrupt row")
            return original(lifecycle, session, assessment, **kwargs)

        with mock.patch.object(SessionLifecycle, "submit_expired", autospec=True, side_effect=flaky):
            with self.assertLogs("apps.assessments.workers", level="ERROR") as logs:
                report = self.sweep(at(11, 30))

        self.assertEqual((report.processed, report.acted, report.skipped, report.failed), (2, 1, 1, 1))
        self.assertEqual(report.errors[0].keys["assignment_id"], str(broken.pk))
        self.assertIn(str(broken.pk), logs.output[0])
        healthy.refresh_from_db()
        self.assertIsNotNone(healthy.submitted_at)

    def test_store_failure_aborts_run(self):
        make_session(self.assessment, self.student, started_at=at(10))
        with mock.patch.object(SessionLifecycle, "submit_expired", side_effect=OperationalError("db down")):
            with self.assertRaises(OperationalError):
                self.sweep(at(11, 30))


class AutoSubmitExpiredCommandTests(TestCase):
    def setUp(self):
        now = timezone.now()
        self.course = make_course()
        self.assessment = make_supervised(
            self.course, scheduled_at=now - timedelta(hours=2), duration_minutes=60
        )
        self.session = make_session(self.assessment, make_user(), started_at=now - timedelta(hours=2))

    def test_reports_counts(self):
        out = StringIO()
        call_command("auto_submit_expired", stdout=out)

        output = out.getvalue()
        self.assertIn("Processed: 1", output)
        self.assertIn("Submitted: 1", output)
        self.assertIn("Skipped: 0", output)
        self.session.refresh_from_db()
        self.assertIsNotNone(self.session.submitted_at)

    def test_dry_run(self):
        out = StringIO()
        call_command("auto_submit_expired", "--dry-run", stdout=out)

        self.assertIn("Would be submitted: 1", out.getvalue())
        self.session.refresh_from_db()
        self.assertIsNone(self.session.submitted_at)

    def test_database_unavailable_is_a_command_error(self):
        with mock.patch("apps.assessments.management.commands.auto_submit_expired.auto_submit_expired",
                        side_effect=OperationalError("db down")):
            with self.assertRaises(CommandError):
                call_command("auto_submit_expired", stdout=StringIO())


class SweepAfterManualGradeTests(TestCase):
    def setUp(self):
        self.course = make_course()
        self.student = make_user()
        self.assessment = make_supervised(self.course, scheduled_at=at(10), duration_minutes=60)
        self.question = make_question(self.assessment, Question.QuestionType.ONE_CHOICE, points=4)
        # started late, still inside its own hour when the window closes
        self.session = make_session(self.assessment, self.student, started_at=at(10, 30))
        make_answer(self.session, self.question, 0)

    def test_sweep_keeps_manual_grade(self):
        GradingService(clock=FrozenClock(at(11, 2))).save_grade(
            self.session,
            self.assessment,
            scores={str(self.question.id): {"score": Decimal("3")}},
        )
        self.assertEqual(self.session.status, AssessmentAssignment.Status.GRADED)

        report = workers.auto_submit_expired(clock=FrozenClock(at(11, 5)))

        self.assertEqual(report.processed, 0)
        self.session.refresh_from_db()
        self.assertEqual(self.session.score, Decimal("3.00"))
        self.assertEqual(self.session.graded_at, at(11, 2))
        self.assertIsNone(self.session.submitted_at)
        self.assertFalse(self.session.forced_submission)
        self.assertEqual(self.session.answers.get().score, Decimal("3.00"))

    def test_stale_copy_cannot_force_submit_graded_session(self):
        stale = AssessmentAssignment.objects.get(pk=self.session.pk)
        GradingService(clock=FrozenClock(at(11, 2))).save_grade(
            self.session,
            self.assessment,
            scores={str(self.question.id): {"score": Decimal("3")}},
        )

        lifecycle = SessionLifecycle(clock=FrozenClock(at(11, 5)))
        self.assertFalse(lifecycle.submit_expired(stale, self.assessment))

        self.session.refresh_from_db()
        self.assertEqual(self.session.score, Decimal("3.00"))
        self.assertIsNone(self.session.submitted_at)
