"""Celery application instance."""

import os

from celery import Celery

"""
Default Celery to the same settings module as Django local dev.

The periodic lifecycle jobs (expiry sweep, materialisation, reminders) are
declared in CELERY_BEAT_SCHEDULE; run `celery -A config beat` next to a worker.
"""

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.local")

app = Celery("sentraexam")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
