import time

from django.conf import settings
from django.core.management.base import BaseCommand

from giveaways.clients import get_collaborators
from giveaways.jobs import SUCCESS, run_distribution_job, run_lifecycle_job


class Command(BaseCommand):
    help = "Advance campaign statuses and distribute rewards on a fixed cadence"

    def add_arguments(self, parser):
        parser.add_argument("--job", choices=["all", "lifecycle", "distribution"], default="all")
        parser.add_argument("--interval", type=int, default=None, help="Seconds between ticks")
        parser.add_argument("--once", action="store_true")

    def tick(self, job: str):
        collaborators = get_collaborators()
        try:
            reports = []
            if job in ("all", "lifecycle"):
                reports.append(run_lifecycle_job(notifier=collaborators.notifier))
            if job in ("all", "distribution"):
                reports.append(run_distribution_job(collaborators=collaborators))
            return reports
        finally:
            collaborators.close()

    def handle(self, *args, **options):
        interval = options["interval"] or settings.REWARD_JOB_INTERVAL_SECONDS
        while True:
            try:
                reports = self.tick(options["job"])
            except Exception as exc:
                if options["once"]:
                    raise
                self.stderr.write(self.style.ERROR(f"Tick failed: {exc}"))
                reports = []
            for report in reports:
                counts = ", ".join(f"{key}={value}" for key, value in report.counts.items())
                style = self.style.SUCCESS if report.outcome == SUCCESS else self.style.WARNING
                self.stdout.write(style(f"{report.job}: {report.outcome} ({counts})"))
            if options["once"]:
                return
            time.sleep(interval)
