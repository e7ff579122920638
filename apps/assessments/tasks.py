from __future__ import annotations

from celery import shared_task

from . import workers


@shared_task
def auto_submit_expired_assessments(dry_run: bool = False) -> dict:
    """Every 5 minutes: force-submit supervised sessions whose time is up."""
    return workers.auto_submit_expired(dry_run=dry_run).as_dict()


@shared_task
def materialise_assessment_assignments(dry_run: bool = False) -> dict:
    """Every 30 minutes: create missing session rows on ended assessments."""
    return workers.materialise_assignments(dry_run=dry_run).as_dict()
