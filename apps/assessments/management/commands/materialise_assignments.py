from apps.assessments.management.base import WorkerCommand
from apps.assessments.workers import materialise_assignments


class Command(WorkerCommand):
    help = "Create a session row for every enrolled student missing one on ended assessments"
    action_label = "Created"

    def run_worker(self, *, dry_run):
        return materialise_assignments(dry_run=dry_run)
