from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction

from apps.assessments import timing
from apps.assessments.models import Assessment
from apps.assessments.workers import WorkerReport, run_row
from apps.common.clock import Clock, system_clock
from apps.common.queries import stream_in_chunks
from apps.courses.models import CourseEnrollment

from .services import NotificationService

logger = logging.getLogger(__name__)

REMINDER_TYPE = "assessment_starting_soon"


def _student_ids_for_assessment(assessment: Assessment) -> set[int]:
    return set(
        CourseEnrollment.objects.active()
        .filter(course_id=assessment.course_id)
        .values_list("student_id", flat=True)
    )


def _remind(assessment: Assessment, *, now, dry_run: bool) -> int:
    with transaction.atomic():
        if not dry_run:
            # Claim first: of two overlapping runs only one gets past this.
            claimed = Assessment.objects.filter(pk=assessment.pk, reminder_sent_at__isnull=True).update(
                reminder_sent_at=now, updated_at=now
            )
            if not claimed:
                return 0

        student_ids = _student_ids_for_assessment(assessment)
        if student_ids and not dry_run:
            minutes = max(1, int((assessment.scheduled_at - now).total_seconds() // 60))
            NotificationService.send_bulk_notification(
                user_ids=student_ids,
                subject="Assessment starting soon",
                body=f"'{assessment.title}' starts in {minutes} minute(s).",
                metadata={
                    "type": REMINDER_TYPE,
                    "assessment_id": str(assessment.id),
                    "assessment_title": assessment.title,
                    "scheduled_at": assessment.scheduled_at.isoformat(),
                    "url": f"/assessments/{assessment.id}/",
                },
            )

    logger.info(
        "Assessment reminder sent",
        extra={"assessment_id": str(assessment.id), "recipients": len(student_ids), "dry_run": dry_run},
    )
    return 1


def send_assessment_reminders(
    *,
    dry_run: bool = False,
    clock: Clock | None = None,
    window: timedelta | None = None,
) -> WorkerReport:
    """
    Notify enrolled students of published assessments opening within the window.

    `reminder_sent_at` is stamped even when nobody is enrolled, so an
    assessment is only ever considered once.
    """
    clock = clock or system_clock
    now = clock.now()
    window = window or timedelta(minutes=settings.ASSESSMENT_REMINDER_WINDOW_MINUTES)
    report = WorkerReport("send_assessment_reminders", dry_run=dry_run)

    upcoming = Assessment.objects.filter(
        is_published=True,
        reminder_sent_at__isnull=True,
        scheduled_at__gt=now,
        scheduled_at__lte=now + window,
    )

    for assessment in stream_in_chunks(upcoming, settings.ASSESSMENT_WORKER_CHUNK_SIZE):

        def process(assessment=assessment) -> int:
            if not timing.starts_within(assessment, now, window):
                return 0
            return _remind(assessment, now=now, dry_run=dry_run)

        run_row(report, {"assessment_id": str(assessment.id)}, process)

    logger.info("Assessment reminder run finished", extra=report.as_dict())
    return report
