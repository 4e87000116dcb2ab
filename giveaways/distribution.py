"""Reward distribution engine.

Three paths, picked by the rule's prize kind:

* tokens: one batch per campaign, truncated to what the pool can cover, sent in
  a single partner call and recorded in one transaction only after the partner
  accepted it;
* coins: strictly sequential per user against an in-memory running balance,
  each user committed (winner, consumption, inventory, ledger transaction) as
  one unit;
* merchandise and logos: winner records only, fulfilment is downstream of the
  ``reward_awarded`` notification.

Qualifiers that do not fit in this cycle are deferred, never rejected. They
are evaluated again on the next cycle.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from django.db import DatabaseError, transaction
from django.utils import timezone

from .clients import TokenDistributionRequest
from .eligibility import CampaignWithRule, Qualifier
from .exceptions import DuplicateWinnerConflict, InventoryExhausted, TransientExternalError
from .ledger import available_inventory, mark_consumed, record_winner, reserve_inventory
from .models import Campaign, GiveAwayRule
from .notifications import REWARD_AWARDED, Notification, notify_safely

logger = logging.getLogger(__name__)


@dataclass
class DistributionResult:
    campaign_id: int
    prize_kind: str
    rewarded: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    units: int = 0


def _user_ids(qualifiers: list[Qualifier]) -> list[str]:
    return [q.user_id for q in qualifiers]


def _record(aggregate: CampaignWithRule, qualifier: Qualifier, quantity: int, gifts: int, reference: str, now: datetime):
    rule = aggregate.rule
    with transaction.atomic():
        winner = record_winner(aggregate.campaign, rule, qualifier.user_id, quantity, reference, awarded_at=now)
        if rule.can_repeat:
            mark_consumed(winner, qualifier.events_for(rule.minimum_count, gifts))
    return winner


def _announce(notifier, aggregate: CampaignWithRule, qualifier: Qualifier, quantity: int) -> None:
    notify_safely(
        notifier,
        Notification(
            template=REWARD_AWARDED,
            user_id=qualifier.user_id,
            campaign_id=aggregate.campaign.pk,
            context={"prize_kind": aggregate.rule.prize_kind, "quantity": quantity, "email": qualifier.email},
        ),
    )


def distribute_tokens(aggregate: CampaignWithRule, qualifiers: list[Qualifier], tokens, notifier, now: datetime) -> DistributionResult:
    campaign, rule, pool = aggregate.campaign, aggregate.rule, aggregate.token_pool
    result = DistributionResult(campaign_id=campaign.pk, prize_kind=rule.prize_kind)

    available = max(available_inventory(pool.pk), 0)
    max_recipients = available // rule.quantity_per_gift
    batch, overflow = qualifiers[:max_recipients], qualifiers[max_recipients:]
    result.deferred = _user_ids(overflow)
    if overflow:
        logger.info(
            "Campaign %s: token pool %s has %d left, covering %d of %d qualifiers; %d deferred",
            campaign.pk,
            pool.external_id,
            available,
            len(batch),
            len(qualifiers),
            len(overflow),
        )
    if not batch:
        return result

    request = TokenDistributionRequest(
        pool_id=pool.external_id,
        campaign_id=campaign.pk,
        validity_window=(pool.valid_from or campaign.start_date, pool.valid_until or campaign.end_date),
        quantity_per_winner=rule.quantity_per_gift,
        user_ids=_user_ids(batch),
    )
    try:
        response = tokens.distribute(request)
    except TransientExternalError as exc:
        logger.warning("Campaign %s: token distribution failed, retrying next cycle: %s", campaign.pk, exc)
        result.deferred = _user_ids(qualifiers)
        return result
    if not response.success:
        logger.warning("Campaign %s: token distribution rejected, retrying next cycle: %s", campaign.pk, response.error)
        result.deferred = _user_ids(qualifiers)
        return result

    recorded: list[Qualifier] = []
    try:
        with transaction.atomic():
            for qualifier in batch:
                try:
                    _record(aggregate, qualifier, rule.quantity_per_gift, 1, response.distribution_reference, now)
                except DuplicateWinnerConflict as exc:
                    logger.info("Campaign %s: %s", campaign.pk, exc)
                    result.duplicates.append(qualifier.user_id)
                    continue
                recorded.append(qualifier)
            reserve_inventory(pool.pk, rule.quantity_per_gift * len(recorded))
    except InventoryExhausted:
        logger.error(
            "Campaign %s: pool %s was drained concurrently; distribution %s could not be recorded",
            campaign.pk,
            pool.external_id,
            response.distribution_reference,
        )
        result.failed = _user_ids(batch)
        result.duplicates = []
        return result

    result.rewarded = _user_ids(recorded)
    result.units = rule.quantity_per_gift * len(recorded)
    logger.info(
        "Campaign %s: %d users received %d tokens each (distribution %s)",
        campaign.pk,
        len(recorded),
        rule.quantity_per_gift,
        response.distribution_reference,
    )
    for qualifier in recorded:
        _announce(notifier, aggregate, qualifier, rule.quantity_per_gift)
    return result


def distribute_coins(aggregate: CampaignWithRule, qualifiers: list[Qualifier], coins, notifier, now: datetime) -> DistributionResult:
    campaign, rule, source = aggregate.campaign, aggregate.rule, aggregate.coin_source
    result = DistributionResult(campaign_id=campaign.pk, prize_kind=rule.prize_kind)

    if not campaign.coin_usage_enabled:
        logger.warning("Campaign %s: coin usage is disabled, deferring %d qualifiers", campaign.pk, len(qualifiers))
        result.deferred = _user_ids(qualifiers)
        return result
    try:
        balance = coins.get_balance(source.external_id)
    except TransientExternalError as exc:
        logger.warning("Campaign %s: coin balance unavailable, retrying next cycle: %s", campaign.pk, exc)
        result.deferred = _user_ids(qualifiers)
        return result

    # Only guard against over-allocation within this run. Keep this loop sequential.
    available_coins = min(balance, available_inventory(source.pk))

    for qualifier in qualifiers:
        amount = rule.quantity_per_gift * qualifier.reward_multiplier
        if available_coins < amount:
            logger.info(
                "Campaign %s: %d coins left, %s needs %d; deferred",
                campaign.pk,
                available_coins,
                qualifier.user_id,
                amount,
            )
            result.deferred.append(qualifier.user_id)
            continue
        try:
            with transaction.atomic():
                winner = _record(aggregate, qualifier, amount, qualifier.reward_multiplier, "", now)
                reserve_inventory(source.pk, amount)
                winner.distribution_reference = coins.create_transaction(
                    qualifier.user_id,
                    amount,
                    reason=f"campaign {campaign.pk} reward",
                    reference=f"campaign:{campaign.pk}:winner:{winner.pk}",
                )
                winner.save(update_fields=["distribution_reference"])
        except DuplicateWinnerConflict as exc:
            logger.info("Campaign %s: %s", campaign.pk, exc)
            result.duplicates.append(qualifier.user_id)
            continue
        except InventoryExhausted as exc:
            logger.warning("Campaign %s: %s; deferring the rest of this cycle", campaign.pk, exc)
            available_coins = 0
            result.deferred.append(qualifier.user_id)
            continue
        except TransientExternalError as exc:
            logger.warning("Campaign %s: coin transaction for %s failed: %s", campaign.pk, qualifier.user_id, exc)
            result.failed.append(qualifier.user_id)
            continue
        except DatabaseError:
            logger.exception("Campaign %s: could not record coins for %s", campaign.pk, qualifier.user_id)
            result.failed.append(qualifier.user_id)
            continue

        available_coins -= amount
        result.rewarded.append(qualifier.user_id)
        result.units += amount
        _announce(notifier, aggregate, qualifier, amount)

    logger.info(
        "Campaign %s: %d users received %d coins in total, %d deferred, %d failed",
        campaign.pk,
        len(result.rewarded),
        result.units,
        len(result.deferred),
        len(result.failed),
    )
    return result


def distribute_direct(aggregate: CampaignWithRule, qualifiers: list[Qualifier], notifier, now: datetime) -> DistributionResult:
    campaign, rule = aggregate.campaign, aggregate.rule
    result = DistributionResult(campaign_id=campaign.pk, prize_kind=rule.prize_kind)
    for qualifier in qualifiers:
        quantity = rule.quantity_per_gift * qualifier.reward_multiplier
        try:
            _record(aggregate, qualifier, quantity, qualifier.reward_multiplier, "", now)
        except DuplicateWinnerConflict as exc:
            logger.info("Campaign %s: %s", campaign.pk, exc)
            result.duplicates.append(qualifier.user_id)
            continue
        except DatabaseError:
            logger.exception("Campaign %s: could not record %s for %s", campaign.pk, rule.prize_kind, qualifier.user_id)
            result.failed.append(qualifier.user_id)
            continue
        result.rewarded.append(qualifier.user_id)
        result.units += quantity
        _announce(notifier, aggregate, qualifier, quantity)
    return result


def distribute(aggregate: CampaignWithRule, qualifiers: list[Qualifier], collaborators, now: datetime | None = None) -> DistributionResult:
    now = now or timezone.now()
    campaign, rule = aggregate.campaign, aggregate.rule

    if not Campaign.objects.filter(pk=campaign.pk, status=Campaign.Status.IN_PROGRESS).exists():
        logger.info("Campaign %s is no longer in progress; nothing distributed", campaign.pk)
        return DistributionResult(campaign_id=campaign.pk, prize_kind=rule.prize_kind, deferred=_user_ids(qualifiers))
    if not qualifiers:
        return DistributionResult(campaign_id=campaign.pk, prize_kind=rule.prize_kind)

    if rule.prize_kind == GiveAwayRule.PrizeKind.TOKEN:
        return distribute_tokens(aggregate, qualifiers, collaborators.tokens, collaborators.notifier, now)
    if rule.prize_kind == GiveAwayRule.PrizeKind.COIN:
        return distribute_coins(aggregate, qualifiers, collaborators.coins, collaborators.notifier, now)
    return distribute_direct(aggregate, qualifiers, collaborators.notifier, now)
