"""Run harness for the periodic reward jobs.

Each job call is one scheduler tick: it does its work, records a status
document for the status surface, and returns a JobReport. Nothing is carried
between ticks; every tick starts again from what is committed in the
database.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from django.conf import settings
from django.db import DatabaseError, connection
from django.utils import timezone

from .clients import Collaborators, get_collaborators
from .distribution import DistributionResult, distribute
from .eligibility import CampaignWithRule, assemble_campaigns, evaluate
from .exceptions import RewardError
from .job_status import record_run
from .lifecycle import advance
from .models import GiveAwayRule
from .notifications import get_notifier

logger = logging.getLogger(__name__)

SUCCESS = "success"
PARTIAL = "partial"
FAILED = "failed"


@dataclass
class JobReport:
    job: str
    started_at: datetime
    finished_at: datetime | None = None
    outcome: str = SUCCESS
    counts: dict[str, int] = field(default_factory=dict)

    def finish(self, outcome: str) -> "JobReport":
        self.outcome = outcome
        self.finished_at = timezone.now()
        record_run(self.job, self.started_at, self.finished_at, self.outcome, self.counts)
        return self


def run_lifecycle_job(now: datetime | None = None, notifier=None) -> JobReport:
    report = JobReport(job="lifecycle", started_at=timezone.now())
    notifier = notifier if notifier is not None else get_notifier()
    try:
        result = advance(now or report.started_at, notifier)
    except Exception:
        logger.exception("Lifecycle job failed")
        report.finish(FAILED)
        raise
    report.counts = {
        "campaigns_transitioned": result.transitioned,
        "campaigns_activated": len(result.activated),
        "campaigns_completed": len(result.completed),
        "campaigns_invalid": len(result.invalid),
        "campaigns_failed": len(result.failed),
    }
    return report.finish(PARTIAL if result.failed or result.invalid else SUCCESS)


def process_campaign(aggregate: CampaignWithRule, collaborators: Collaborators, now: datetime) -> DistributionResult:
    qualifiers = evaluate(aggregate, collaborators.segments, collaborators.activity)
    return distribute(aggregate, qualifiers, collaborators, now)


def _guarded(aggregate: CampaignWithRule, collaborators: Collaborators, now: datetime) -> DistributionResult | None:
    try:
        return process_campaign(aggregate, collaborators, now)
    except RewardError as exc:
        logger.warning("Campaign %s skipped this cycle: %s", aggregate.campaign.pk, exc)
    except DatabaseError:
        logger.exception("Campaign %s failed on the database", aggregate.campaign.pk)
    return None


def _threaded(aggregate: CampaignWithRule, collaborators: Collaborators, now: datetime) -> DistributionResult | None:
    try:
        return _guarded(aggregate, collaborators, now)
    finally:
        connection.close()


def _run_campaigns(aggregates: list[CampaignWithRule], collaborators: Collaborators, now: datetime) -> list[DistributionResult | None]:
    workers = settings.REWARD_JOB_CAMPAIGN_WORKERS
    if workers <= 1 or len(aggregates) <= 1:
        return [_guarded(aggregate, collaborators, now) for aggregate in aggregates]
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reward-campaign") as pool:
        return list(pool.map(lambda aggregate: _threaded(aggregate, collaborators, now), aggregates))


def run_distribution_job(now: datetime | None = None, collaborators: Collaborators | None = None) -> JobReport:
    report = JobReport(job="distribution", started_at=timezone.now())
    now = now or report.started_at
    owned = collaborators is None
    collaborators = collaborators or get_collaborators()
    try:
        aggregates, invalid = assemble_campaigns()
        results = _run_campaigns(aggregates, collaborators, now)
    except Exception:
        logger.exception("Distribution job failed")
        report.finish(FAILED)
        raise
    finally:
        if owned:
            collaborators.close()

    done = [r for r in results if r is not None]
    units = {kind: 0 for kind in GiveAwayRule.PrizeKind.values}
    for result in done:
        units[result.prize_kind] += result.units
    report.counts = {
        "campaigns_processed": len(done),
        "campaigns_failed": len(results) - len(done),
        "campaigns_invalid": len(invalid),
        "users_rewarded": sum(len(r.rewarded) for r in done),
        "users_deferred": sum(len(r.deferred) for r in done),
        "users_failed": sum(len(r.failed) for r in done),
        "duplicates_skipped": sum(len(r.duplicates) for r in done),
        "tokens_distributed": units[GiveAwayRule.PrizeKind.TOKEN],
        "coins_distributed": units[GiveAwayRule.PrizeKind.COIN],
        "items_awarded": units[GiveAwayRule.PrizeKind.MERCHANDISE] + units[GiveAwayRule.PrizeKind.LOGO],
    }
    degraded = report.counts["campaigns_failed"] or report.counts["campaigns_invalid"] or report.counts["users_failed"]
    return report.finish(PARTIAL if degraded else SUCCESS)


def run_all(now: datetime | None = None, collaborators: Collaborators | None = None) -> list[JobReport]:
    owned = collaborators is None
    collaborators = collaborators or get_collaborators()
    try:
        return [
            run_lifecycle_job(now, notifier=collaborators.notifier),
            run_distribution_job(now, collaborators=collaborators),
        ]
    finally:
        if owned:
            collaborators.close()
