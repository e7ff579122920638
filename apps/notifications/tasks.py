from __future__ import annotations

from celery import shared_task

from apps.notifications.reminders import send_assessment_reminders


@shared_task
def send_assessment_reminders_task(dry_run: bool = False) -> dict:
    """Every 5 minutes: remind students of assessments opening soon."""
    return send_assessment_reminders(dry_run=dry_run).as_dict()
