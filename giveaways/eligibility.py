"""Eligibility evaluation.

``assemble_campaigns`` builds fully populated aggregates up front so that
``evaluate`` never touches a lazy relation. ``evaluate`` returns qualifiers in
ascending ``user_id`` order; scarcity truncation downstream depends on that
order being stable.
"""

import logging
from dataclasses import dataclass, field

from .exceptions import PersistentValidationError
from .ledger import consumed_event_ids, existing_winner_ids
from .models import Campaign, GiveAwayRule, RewardInventory
from .rules import RuleWindow

logger = logging.getLogger(__name__)


@dataclass
class CampaignWithRule:
    campaign: Campaign
    rule: GiveAwayRule
    token_pool: RewardInventory | None = None
    coin_source: RewardInventory | None = None

    @property
    def window(self) -> RuleWindow:
        return RuleWindow(start=self.rule.rule_start, end=self.rule.rule_end, all_time=self.rule.all_time)


@dataclass
class Qualifier:
    user_id: str
    email: str
    action_count: int
    reward_multiplier: int
    event_ids: list[str] = field(default_factory=list)

    def events_for(self, minimum_count: int, gifts: int) -> list[str]:
        return self.event_ids[: minimum_count * gifts]


def build_aggregate(campaign: Campaign, rule: GiveAwayRule | None) -> CampaignWithRule:
    if rule is None:
        raise PersistentValidationError(f"GiveAway campaign {campaign.pk} has no rule")
    if not rule.is_normalized:
        raise PersistentValidationError(f"Rule of campaign {campaign.pk} was never normalized")
    if rule.config_error:
        raise PersistentValidationError(f"Rule of campaign {campaign.pk} is invalid: {rule.config_error}")
    if not rule.action_id:
        raise PersistentValidationError(f"Rule of campaign {campaign.pk} has no action_id")
    if not rule.all_time and (rule.rule_start is None or rule.rule_end is None):
        raise PersistentValidationError(f"Rule of campaign {campaign.pk} has an incomplete window")
    if rule.prize_kind == GiveAwayRule.PrizeKind.TOKEN and rule.token_pool is None:
        raise PersistentValidationError(f"Token campaign {campaign.pk} has no token pool")
    if rule.prize_kind == GiveAwayRule.PrizeKind.COIN and rule.coin_source is None:
        raise PersistentValidationError(f"Coin campaign {campaign.pk} has no coin source")
    return CampaignWithRule(
        campaign=campaign,
        rule=rule,
        token_pool=rule.token_pool,
        coin_source=rule.coin_source,
    )


def assemble_campaigns() -> tuple[list[CampaignWithRule], list[int]]:
    """Return (aggregates ready for evaluation, ids of campaigns skipped as invalid)."""
    campaigns = (
        Campaign.objects.filter(status=Campaign.Status.IN_PROGRESS, kind=Campaign.Kind.GIVEAWAY)
        .order_by("pk")
    )
    rules = {
        rule.campaign_id: rule
        for rule in GiveAwayRule.objects.select_related("token_pool", "coin_source").filter(
            campaign__in=campaigns
        )
    }
    aggregates: list[CampaignWithRule] = []
    invalid: list[int] = []
    for campaign in campaigns:
        rule = rules.get(campaign.pk)
        if rule is not None:
            rule.campaign = campaign
        try:
            aggregates.append(build_aggregate(campaign, rule))
        except PersistentValidationError as exc:
            logger.error("Skipping campaign %s: %s", campaign.pk, exc)
            invalid.append(campaign.pk)
    return aggregates, invalid


def evaluate(aggregate: CampaignWithRule, segments, activity) -> list[Qualifier]:
    campaign, rule = aggregate.campaign, aggregate.rule
    members = segments.resolve_members(list(campaign.segment_ids or []), org_filter=rule.org_id or None)
    members = sorted({m.user_id: m for m in members}.values(), key=lambda m: m.user_id)

    if not rule.can_repeat:
        already_won = existing_winner_ids(campaign.pk, [m.user_id for m in members])
        if already_won:
            logger.debug("Campaign %s: %d members already rewarded", campaign.pk, len(already_won))
        members = [m for m in members if m.user_id not in already_won]

    window = aggregate.window
    qualifiers: list[Qualifier] = []
    for member in members:
        if rule.can_repeat:
            consumed = consumed_event_ids(campaign.pk, member.user_id)
            events = [
                event_id
                for event_id in activity.list_qualifying_events(member.user_id, rule.action_id, window)
                if event_id not in consumed
            ]
            count = len(events)
        else:
            events = []
            count = activity.count_qualifying_events(member.user_id, rule.action_id, window)

        if count < rule.minimum_count:
            continue
        multiplier = count // rule.minimum_count if rule.can_repeat else 1
        qualifiers.append(
            Qualifier(
                user_id=member.user_id,
                email=member.email,
                action_count=count,
                reward_multiplier=multiplier,
                event_ids=events,
            )
        )

    logger.info(
        "Campaign %s: %d of %d members qualify for %s",
        campaign.pk,
        len(qualifiers),
        len(members),
        rule.action_id,
    )
    return qualifiers
