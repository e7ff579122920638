from datetime import timedelta
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from apps.assessments.tests.factories import at, enrol, make_course, make_homework, make_supervised, make_user
from apps.common.clock import FrozenClock
from apps.courses.models import CourseEnrollment
from apps.notifications.models import Notification
from apps.notifications.reminders import REMINDER_TYPE, send_assessment_reminders


class SendAssessmentRemindersTests(TestCase):
    def setUp(self):
        self.now = at(9, 50)
        self.clock = FrozenClock(self.now)
        self.course = make_course()
        self.students = [make_user() for _ in range(3)]
        for student in self.students:
            enrol(self.course, student)

    def run_reminders(self, **kwargs):
        return send_assessment_reminders(clock=self.clock, **kwargs)

    def test_notifies_enrolled_students(self):
        assessment = make_supervised(self.course, scheduled_at=self.now + timedelta(minutes=10))

        report = self.run_reminders()

        self.assertEqual(report.acted, 1)
        self.assertEqual(Notification.objects.count(), 3)
        self.assertEqual(
            set(Notification.objects.values_list("user_id", flat=True)), {s.pk for s in self.students}
        )
        metadata = Notification.objects.first().metadata
        self.assertEqual(metadata["type"], REMINDER_TYPE)
        self.assertEqual(metadata["assessment_id"], str(assessment.id))
        self.assertEqual(metadata["assessment_title"], assessment.title)
        self.assertIn("url", metadata)
        assessment.refresh_from_db()
        self.assertEqual(assessment.reminder_sent_at, self.now)

    def test_does_not_remind_twice(self):
        make_supervised(self.course, scheduled_at=self.now + timedelta(minutes=10))
        self.run_reminders()
        self.clock.advance(minutes=5)

        report = self.run_reminders()

        self.assertEqual(report.processed, 0)
        self.assertEqual(Notification.objects.count(), 3)

    def test_already_claimed_assessment_is_skipped(self):
        make_supervised(
            self.course, scheduled_at=self.now + timedelta(minutes=10), reminder_sent_at=self.now - timedelta(minutes=1)
        )
        self.run_reminders()
        self.assertFalse(Notification.objects.exists())

    def test_skips_out_of_scope_assessments(self):
        make_supervised(self.course, scheduled_at=self.now + timedelta(minutes=10), is_published=False)
        make_homework(self.course, due_date=self.now + timedelta(days=1))
        make_supervised(self.course, scheduled_at=self.now + timedelta(minutes=30))
        make_supervised(self.course, scheduled_at=self.now - timedelta(minutes=5))

        report = self.run_reminders()

        self.assertEqual(report.processed, 0)
        self.assertFalse(Notification.objects.exists())

    def test_withdrawn_students_are_not_notified(self):
        withdrawn = make_user()
        enrol(self.course, withdrawn, status=CourseEnrollment.EnrollmentStatus.DROPPED)
        make_supervised(self.course, scheduled_at=self.now + timedelta(minutes=10))

        self.run_reminders()

        self.assertFalse(Notification.objects.filter(user=withdrawn).exists())

    def test_marks_reminded_even_without_students(self):
        assessment = make_supervised(make_course(), scheduled_at=self.now + timedelta(minutes=10))

        report = self.run_reminders()

        assessment.refresh_from_db()
        self.assertIsNotNone(assessment.reminder_sent_at)
        self.assertEqual(report.acted, 1)
        self.assertFalse(Notification.objects.exists())

    def test_dry_run_writes_nothing(self):
        assessment = make_supervised(self.course, scheduled_at=self.now + timedelta(minutes=10))

        report = self.run_reminders(dry_run=True)

        assessment.refresh_from_db()
        self.assertIsNone(assessment.reminder_sent_at)
        self.assertEqual(report.acted, 1)
        self.assertFalse(Notification.objects.exists())


class SendAssessmentRemindersCommandTests(TestCase):
    def test_reports_reminded_assessments(self):
        course = make_course()
        enrol(course, make_user())
        make_supervised(course, scheduled_at=timezone.now() + timedelta(minutes=10))

        out = StringIO()
        call_command("send_assessment_reminders", stdout=out)

        output = out.getvalue()
        self.assertIn("Processed: 1", output)
        self.assertIn("Reminded: 1", output)
        self.assertEqual(Notification.objects.count(), 1)
