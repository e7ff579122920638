from apps.assessments.management.base import WorkerCommand
from apps.notifications.reminders import send_assessment_reminders


class Command(WorkerCommand):
    help = "Notify students of published assessments starting within the reminder window"
    action_label = "Reminded"

    def run_worker(self, *, dry_run):
        return send_assessment_reminders(dry_run=dry_run)
