from datetime import timedelta
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from apps.assessments import workers
from apps.assessments.models import AssessmentAssignment
from apps.common.clock import FrozenClock
from apps.courses.models import CourseEnrollment

from .factories import at, enrol, make_course, make_homework, make_session, make_supervised, make_user


class MaterialiseAssignmentsTests(TestCase):
    def setUp(self):
        self.course = make_course()
        self.students = [make_user() for _ in range(10)]
        for student in self.students:
            enrol(self.course, student)
        self.assessment = make_supervised(self.course, scheduled_at=at(10), duration_minutes=60)
        self.clock = FrozenClock(at(12))

    def test_creates_only_missing_rows(self):
        for student in self.students[:7]:
            make_session(self.assessment, student, started_at=at(10, 5))

        report = workers.materialise_assignments(clock=self.clock)

        self.assertEqual(report.acted, 3)
        self.assertEqual(self.assessment.assignments.count(), 10)
        created = self.assessment.assignments.filter(student__in=self.students[7:])
        self.assertEqual(created.count(), 3)
        self.assertFalse(created.filter(started_at__isnull=False).exists())

    def test_second_run_creates_nothing(self):
        workers.materialise_assignments(clock=self.clock)
        report = workers.materialise_assignments(clock=self.clock)

        self.assertEqual(report.acted, 0)
        self.assertEqual(report.skipped, 1)
        self.assertEqual(self.assessment.assignments.count(), 10)

    def test_withdrawn_students_are_left_out(self):
        dropped = make_user()
        enrol(self.course, dropped, status=CourseEnrollment.EnrollmentStatus.DROPPED)

        workers.materialise_assignments(clock=self.clock)

        self.assertFalse(AssessmentAssignment.objects.filter(student=dropped).exists())

    def test_assessment_still_running_is_skipped(self):
        self.clock.set(at(10, 30))

        report = workers.materialise_assignments(clock=self.clock)

        self.assertEqual(report.acted, 0)
        self.assertEqual(self.assessment.assignments.count(), 0)

    def test_unpublished_and_open_ended_assessments_are_ignored(self):
        make_supervised(self.course, scheduled_at=at(8), duration_minutes=60, is_published=False)
        make_homework(self.course, due_date=None)
        make_homework(self.course, due_date=at(11))

        report = workers.materialise_assignments(clock=self.clock)

        # the supervised window and the homework due at 11:00 have ended
        self.assertEqual(report.processed, 2)
        self.assertEqual(report.acted, 20)

    def test_dry_run_writes_nothing(self):
        report = workers.materialise_assignments(clock=self.clock, dry_run=True)

        self.assertEqual(report.acted, 10)
        self.assertEqual(AssessmentAssignment.objects.count(), 0)


class MaterialiseAssignmentsCommandTests(TestCase):
    def test_reports_created_rows(self):
        now = timezone.now()
        course = make_course()
        for _ in range(3):
            enrol(course, make_user())
        make_homework(course, due_date=now - timedelta(days=1))

        out = StringIO()
        call_command("materialise_assignments", stdout=out)

        output = out.getvalue()
        self.assertIn("Processed: 1", output)
        self.assertIn("Created: 3", output)
        self.assertEqual(AssessmentAssignment.objects.count(), 3)
