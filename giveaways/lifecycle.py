"""Campaign lifecycle controller.

Moves campaigns through their statuses based on wall-clock time. Every
campaign is transitioned in its own transaction, re-reading the row under
``select_for_update`` with the same predicate that selected it, so running the
controller twice (or two controllers at once) only ever transitions a campaign
once.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from django.db import DatabaseError, transaction
from django.utils import timezone

from .exceptions import PersistentValidationError, RewardError
from .models import Campaign, CampaignStatusChange, GiveAwayRule
from .notifications import CAMPAIGN_COMPLETED, CAMPAIGN_STARTED, Notification, notify_safely
from .rules import normalize_rule

logger = logging.getLogger(__name__)

ENDABLE_STATUSES = (Campaign.Status.IN_PROGRESS, Campaign.Status.FORCE_STOPPED)


@dataclass
class LifecycleResult:
    activated: list[int] = field(default_factory=list)
    completed: list[int] = field(default_factory=list)
    invalid: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def transitioned(self) -> int:
        return len(self.activated) + len(self.completed)


def _due_for_activation(now: datetime):
    return (
        Campaign.objects.filter(status=Campaign.Status.UPCOMING, start_date__lte=now)
        .exclude(giveaway_rule__config_error__gt="")
        .order_by("start_date", "pk")
        .values_list("pk", flat=True)
    )


def _due_for_completion(now: datetime):
    return (
        Campaign.objects.filter(status__in=ENDABLE_STATUSES, end_date__lt=now)
        .order_by("end_date", "pk")
        .values_list("pk", flat=True)
    )


def activate_campaign(campaign_id: int, now: datetime) -> CampaignStatusChange | None:
    with transaction.atomic():
        campaign = (
            Campaign.objects.select_for_update()
            .filter(pk=campaign_id, status=Campaign.Status.UPCOMING, start_date__lte=now)
            .first()
        )
        if campaign is None:
            return None

        update_fields = ["coin_usage_enabled"]
        if campaign.kind == Campaign.Kind.GIVEAWAY:
            rule = GiveAwayRule.objects.filter(campaign=campaign).first()
            if rule is None:
                logger.warning("GiveAway campaign %s has no rule; activating without one", campaign_id)
            else:
                rule.campaign = campaign
                parsed = normalize_rule(rule, now)
                window_end = None if parsed.window.all_time else parsed.window.end
                if window_end is not None and window_end > campaign.end_date:
                    logger.info(
                        "Extending campaign %s end_date from %s to %s to cover its rule window",
                        campaign_id,
                        campaign.end_date.isoformat(),
                        window_end.isoformat(),
                    )
                    campaign.end_date = window_end
                    update_fields.append("end_date")

        campaign.coin_usage_enabled = True
        return campaign.transition_to(
            Campaign.Status.IN_PROGRESS,
            reason="start_date reached",
            update_fields=tuple(update_fields),
            changed_at=now,
        )


def complete_campaign(campaign_id: int, now: datetime) -> CampaignStatusChange | None:
    with transaction.atomic():
        campaign = (
            Campaign.objects.select_for_update()
            .filter(pk=campaign_id, status__in=ENDABLE_STATUSES, end_date__lt=now)
            .first()
        )
        if campaign is None:
            return None
        reason = "end_date passed"
        if campaign.status == Campaign.Status.FORCE_STOPPED:
            reason = "end_date passed after force stop"
        return campaign.transition_to(Campaign.Status.COMPLETED, reason=reason, changed_at=now)


def _record_config_error(campaign_id: int, message: str) -> None:
    GiveAwayRule.objects.filter(campaign_id=campaign_id).update(config_error=message)


def advance(now: datetime | None = None, notifier=None) -> LifecycleResult:
    now = now or timezone.now()
    result = LifecycleResult()

    for campaign_id in list(_due_for_activation(now)):
        try:
            change = activate_campaign(campaign_id, now)
        except PersistentValidationError as exc:
            _record_config_error(campaign_id, str(exc))
            logger.error("Campaign %s not activated, rule configuration is invalid: %s", campaign_id, exc)
            result.invalid.append(campaign_id)
            continue
        except (RewardError, DatabaseError):
            logger.exception("Campaign %s activation failed", campaign_id)
            result.failed.append(campaign_id)
            continue
        if change is None:
            continue
        result.activated.append(campaign_id)
        logger.info("Campaign %s is now %s", campaign_id, change.to_status)
        notify_safely(notifier, Notification(template=CAMPAIGN_STARTED, campaign_id=campaign_id))

    for campaign_id in list(_due_for_completion(now)):
        try:
            change = complete_campaign(campaign_id, now)
        except (RewardError, DatabaseError):
            logger.exception("Campaign %s completion failed", campaign_id)
            result.failed.append(campaign_id)
            continue
        if change is None:
            continue
        result.completed.append(campaign_id)
        logger.info("Campaign %s is now %s (was %s)", campaign_id, change.to_status, change.from_status)
        notify_safely(notifier, Notification(template=CAMPAIGN_COMPLETED, campaign_id=campaign_id))

    return result
