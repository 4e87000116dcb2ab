from datetime import datetime

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from .exceptions import InvalidStatusTransition, RuleLocked


class Campaign(models.Model):
    class Kind(models.TextChoices):
        GIVEAWAY = "GIVEAWAY", "GiveAway"
        RAFFLE = "RAFFLE", "Raffle"
        CHALLENGE = "CHALLENGE", "Challenge"

    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        UPCOMING = "UPCOMING", "Upcoming"
        IN_PROGRESS = "IN_PROGRESS", "In progress"
        COMPLETED = "COMPLETED", "Completed"
        FORCE_STOPPED = "FORCE_STOPPED", "Force stopped"

    # FORCE_STOPPED is reachable from every non-terminal status, admin only.
    ALLOWED_TRANSITIONS = {
        Status.DRAFT: {Status.UPCOMING, Status.FORCE_STOPPED},
        Status.UPCOMING: {Status.IN_PROGRESS, Status.FORCE_STOPPED},
        Status.IN_PROGRESS: {Status.COMPLETED, Status.FORCE_STOPPED},
        Status.FORCE_STOPPED: {Status.COMPLETED},
        Status.COMPLETED: set(),
    }

    name = models.CharField(max_length=255)
    kind = models.CharField(max_length=16, choices=Kind.choices, default=Kind.GIVEAWAY)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    coin_usage_enabled = models.BooleanField(default=False)
    segment_ids = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["status", "start_date"], name="campaign_status_start_idx"),
            models.Index(fields=["status", "end_date"], name="campaign_status_end_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.pk}:{self.name}"

    def can_transition_to(self, status: str) -> bool:
        return status in self.ALLOWED_TRANSITIONS.get(self.status, set())

    def transition_to(
        self,
        status: str,
        reason: str = "",
        update_fields: tuple[str, ...] = (),
        changed_at: datetime | None = None,
    ) -> "CampaignStatusChange":
        if not self.can_transition_to(status):
            raise InvalidStatusTransition(f"Campaign {self.pk} cannot move from {self.status} to {status}")
        previous = self.status
        self.status = status
        self.save(update_fields=["status", "updated_at", *update_fields])
        return CampaignStatusChange.objects.create(
            campaign=self,
            from_status=previous,
            to_status=status,
            reason=reason,
            changed_at=changed_at or timezone.now(),
        )

    def force_stop(self, reason: str = "admin") -> "CampaignStatusChange":
        return self.transition_to(self.Status.FORCE_STOPPED, reason=reason)


class RewardInventory(models.Model):
    class Kind(models.TextChoices):
        TOKEN_POOL = "TOKEN_POOL", "Token pool"
        COIN_SOURCE = "COIN_SOURCE", "Coin source"

    kind = models.CharField(max_length=16, choices=Kind.choices)
    external_id = models.CharField(max_length=128)
    name = models.CharField(max_length=255, blank=True)
    total = models.BigIntegerField(default=0)
    distributed = models.BigIntegerField(default=0)
    valid_from = models.DateTimeField(null=True, blank=True)
    valid_until = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name_plural = "reward inventories"
        constraints = [
            models.UniqueConstraint(fields=["kind", "external_id"], name="uniq_inventory_kind_external_id"),
            models.CheckConstraint(condition=Q(distributed__gte=0), name="inventory_distributed_non_negative"),
            models.CheckConstraint(condition=Q(distributed__lte=F("total")), name="inventory_distributed_within_total"),
        ]

    def __str__(self) -> str:
        return f"{self.kind}:{self.external_id} ({self.distributed}/{self.total})"

    @property
    def available(self) -> int:
        return self.total - self.distributed


class GiveAwayRule(models.Model):
    class PrizeKind(models.TextChoices):
        TOKEN = "TOKEN", "Token"
        MERCHANDISE = "MERCHANDISE", "Merchandise"
        COIN = "COIN", "Coin"
        LOGO = "LOGO", "Logo"

    class RuleFormat(models.TextChoices):
        STRUCTURED = "STRUCTURED", "Structured"
        LEGACY_KEYWORD = "LEGACY_KEYWORD", "Legacy keyword"
        CUSTOM_OBJECTIVE = "CUSTOM_OBJECTIVE", "Custom objective"
        DIRECT_OBJECTIVE_ID = "DIRECT_OBJECTIVE_ID", "Direct objective id"

    LOCKED_FIELDS = (
        "prize_kind",
        "action_id",
        "minimum_count",
        "quantity_per_gift",
        "can_repeat",
        "org_id",
        "rule_start",
        "rule_end",
        "all_time",
        "token_pool_id",
        "coin_source_id",
        "raw_config",
    )

    campaign = models.OneToOneField(Campaign, on_delete=models.CASCADE, related_name="giveaway_rule")
    prize_kind = models.CharField(max_length=16, choices=PrizeKind.choices)
    action_id = models.CharField(max_length=128, blank=True)
    minimum_count = models.PositiveIntegerField(default=1)
    quantity_per_gift = models.PositiveIntegerField(default=1)
    can_repeat = models.BooleanField(default=False)
    org_id = models.CharField(max_length=128, null=True, blank=True)
    rule_start = models.DateTimeField(null=True, blank=True)
    rule_end = models.DateTimeField(null=True, blank=True)
    all_time = models.BooleanField(default=False)
    token_pool = models.ForeignKey(
        RewardInventory, null=True, blank=True, on_delete=models.PROTECT, related_name="token_rules"
    )
    coin_source = models.ForeignKey(
        RewardInventory, null=True, blank=True, on_delete=models.PROTECT, related_name="coin_rules"
    )
    raw_config = models.TextField(blank=True)
    rule_format = models.CharField(max_length=24, choices=RuleFormat.choices, blank=True)
    normalized_at = models.DateTimeField(null=True, blank=True)
    config_error = models.TextField(blank=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=Q(minimum_count__gte=1), name="rule_minimum_count_positive"),
            models.CheckConstraint(condition=Q(quantity_per_gift__gt=0), name="rule_quantity_positive"),
        ]

    def __str__(self) -> str:
        return f"rule:{self.campaign_id}:{self.prize_kind}"

    @property
    def is_normalized(self) -> bool:
        return self.normalized_at is not None

    def save(self, *args, **kwargs):
        if self.pk is not None:
            current = type(self).objects.select_related("campaign").filter(pk=self.pk).first()
            if current is not None:
                changed = [f for f in self.LOCKED_FIELDS if getattr(current, f) != getattr(self, f)]
                editable = (Campaign.Status.DRAFT, Campaign.Status.UPCOMING)
                if changed and current.campaign.status not in editable:
                    raise RuleLocked(f"Rule for campaign {self.campaign_id} is locked; changed {', '.join(changed)}")
                # An edit after a failed activation makes the rule eligible again.
                if current.raw_config != self.raw_config or (changed and current.config_error):
                    self.config_error = ""
                    self.rule_format = ""
                    self.normalized_at = None
        super().save(*args, **kwargs)


class WinnerRecord(models.Model):
    user_id = models.CharField(max_length=128)
    campaign = models.ForeignKey(Campaign, on_delete=models.PROTECT, related_name="winners")
    prize_kind = models.CharField(max_length=16, choices=GiveAwayRule.PrizeKind.choices)
    quantity = models.BigIntegerField()
    awarded_at = models.DateTimeField(default=timezone.now)
    distribution_reference = models.CharField(max_length=255, blank=True)
    repeatable = models.BooleanField(default=False)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["user_id", "campaign"],
                condition=Q(repeatable=False),
                name="uniq_winner_user_campaign",
            )
        ]
        indexes = [models.Index(fields=["campaign", "user_id"], name="winner_campaign_user_idx")]

    def __str__(self) -> str:
        return f"{self.campaign_id}:{self.user_id} x{self.quantity}"


class ActivityConsumption(models.Model):
    campaign = models.ForeignKey(Campaign, on_delete=models.CASCADE, related_name="consumed_events")
    user_id = models.CharField(max_length=128)
    event_id = models.CharField(max_length=128)
    winner = models.ForeignKey(WinnerRecord, on_delete=models.CASCADE, related_name="consumed_events")
    consumed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["campaign", "event_id"], name="uniq_consumed_campaign_event")
        ]


class CampaignStatusChange(models.Model):
    campaign = models.ForeignKey(Campaign, on_delete=models.CASCADE, related_name="status_changes")
    from_status = models.CharField(max_length=16, choices=Campaign.Status.choices)
    to_status = models.CharField(max_length=16, choices=Campaign.Status.choices)
    reason = models.CharField(max_length=255, blank=True)
    changed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["changed_at", "pk"]
