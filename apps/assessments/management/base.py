from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from apps.assessments.workers import FATAL_ERRORS, WorkerReport


class WorkerCommand(BaseCommand):
    """
    Management command wrapper around a scheduled worker function.

    Prints `Processed / <action> / Skipped` counts; exits non-zero only when
    the database cannot be reached.
    """

    action_label = "Acted"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would be done without writing anything",
        )

    def run_worker(self, *, dry_run: bool) -> WorkerReport:
        raise NotImplementedError

    def handle(self, *args, **options):
        dry_run = options["dry_run"]
        if dry_run:
            self.stdout.write(self.style.WARNING("Dry run: no changes will be written."))

        try:
            report = self.run_worker(dry_run=dry_run)
        except FATAL_ERRORS as exc:
            raise CommandError(f"Database unavailable: {exc}") from exc

        label = f"Would be {self.action_label.lower()}" if dry_run else self.action_label
        self.stdout.write(f"Processed: {report.processed}")
        self.stdout.write(self.style.SUCCESS(f"{label}: {report.acted}"))
        self.stdout.write(f"Skipped: {report.skipped}")
        if report.failed:
            self.stderr.write(f"Failed: {report.failed} (see log for details)")
