"""
Scheduled sweeps over assessment sessions.

Each worker is a plain function so it can be driven by Celery beat
(`apps.assessments.tasks`) or by hand (`manage.py auto_submit_expired`, ...).
Runs may overlap or repeat: every write is guarded at the row level, so a
second pass over the same rows finds nothing left to do.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from django.conf import settings
from django.db import InterfaceError, OperationalError, transaction
from django.db.models import Q

from apps.common.clock import Clock, system_clock
from apps.common.queries import stream_in_chunks
from apps.courses.models import CourseEnrollment

from . import timing
from .exceptions import RowProcessingError
from .models import Assessment, AssessmentAssignment
from .services import SessionLifecycle

logger = logging.getLogger(__name__)

# The store being unreachable ends the run; anything else is a per-row failure.
FATAL_ERRORS = (OperationalError, InterfaceError)


@dataclass
class WorkerReport:
    worker: str
    dry_run: bool = False
    processed: int = 0
    acted: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[RowProcessingError] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "worker": self.worker,
            "dry_run": self.dry_run,
            "processed": self.processed,
            "acted": self.acted,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def run_row(report: WorkerReport, keys: dict[str, Any], fn: Callable[[], int]) -> None:
    """
    Process one row and account for it in `report`.

    `fn` returns how many things it did (0 means the row was skipped).
    """
    report.processed += 1
    try:
        acted = fn()
    except FATAL_ERRORS:
        raise
    except Exception as exc:
        error = RowProcessingError(report.worker, keys, exc)
        logger.exception(str(error), extra={"worker": report.worker, **keys})
        report.errors.append(error)
        report.failed += 1
        report.skipped += 1
        return

    if acted:
        report.acted += acted
    else:
        report.skipped += 1


def _chunk_size(chunk_size: int | None) -> int:
    return chunk_size or settings.ASSESSMENT_WORKER_CHUNK_SIZE


def auto_submit_expired(
    *,
    dry_run: bool = False,
    clock: Clock | None = None,
    chunk_size: int | None = None,
) -> WorkerReport:
    """
    Force-submit started supervised sessions whose time is up.

    A session is expired when its own `started_at + duration` has passed or
    the assessment window as a whole has closed. It is stamped at its
    effective deadline rather than at the time of the sweep.
    """
    clock = clock or system_clock
    lifecycle = SessionLifecycle(clock=clock)
    report = WorkerReport("auto_submit_expired", dry_run=dry_run)

    sessions = AssessmentAssignment.objects.in_progress().filter(
        assessment__is_published=True,
        assessment__delivery_mode=Assessment.DeliveryMode.SUPERVISED,
    ).select_related("assessment")

    for session in stream_in_chunks(sessions, _chunk_size(chunk_size)):
        keys = {
            "assignment_id": str(session.id),
            "assessment_id": str(session.assessment_id),
            "student_id": session.student_id,
        }
        run_row(
            report,
            keys,
            lambda session=session: int(lifecycle.submit_expired(session, session.assessment, dry_run=dry_run)),
        )

    logger.info("Expired session sweep finished", extra=report.as_dict())
    return report


def _materialise_for(assessment: Assessment, *, dry_run: bool) -> int:
    with transaction.atomic():
        enrolled = set(
            CourseEnrollment.objects.active()
            .filter(course_id=assessment.course_id)
            .values_list("student_id", flat=True)
        )
        existing = set(assessment.assignments.values_list("student_id", flat=True))
        missing = enrolled - existing
        if missing and not dry_run:
            # unique (assessment, student) absorbs a concurrent take/start
            AssessmentAssignment.objects.bulk_create(
                [AssessmentAssignment(assessment=assessment, student_id=student_id) for student_id in missing],
                ignore_conflicts=True,
            )
    if missing:
        logger.info(
            "Materialised assessment sessions",
            extra={"assessment_id": str(assessment.id), "sessions_created": len(missing), "dry_run": dry_run},
        )
    return len(missing)


def materialise_assignments(
    *,
    dry_run: bool = False,
    clock: Clock | None = None,
    chunk_size: int | None = None,
) -> WorkerReport:
    """
    Give every actively enrolled student a session row on ended assessments.

    `processed`/`skipped` count assessments; `acted` counts rows created.
    """
    clock = clock or system_clock
    now = clock.now()
    report = WorkerReport("materialise_assignments", dry_run=dry_run)

    # Coarse DB filter; timing decides whether the window is really over.
    candidates = Assessment.objects.filter(is_published=True).filter(
        Q(delivery_mode=Assessment.DeliveryMode.HOMEWORK, due_date__lt=now)
        | Q(delivery_mode=Assessment.DeliveryMode.SUPERVISED, scheduled_at__lt=now)
    )

    for assessment in stream_in_chunks(candidates, _chunk_size(chunk_size)):
        keys = {"assessment_id": str(assessment.id)}

        def process(assessment=assessment) -> int:
            if not timing.has_assessment_ended(assessment, now):
                return 0
            return _materialise_for(assessment, dry_run=dry_run)

        run_row(report, keys, process)

    logger.info("Session materialisation finished", extra=report.as_dict())
    return report
