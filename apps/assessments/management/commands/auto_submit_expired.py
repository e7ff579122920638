from apps.assessments.management.base import WorkerCommand
from apps.assessments.workers import auto_submit_expired


class Command(WorkerCommand):
    help = "Force-submit started supervised sessions whose time limit or window has passed"
    action_label = "Submitted"

    def run_worker(self, *, dry_run):
        return auto_submit_expired(dry_run=dry_run)
