import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


CAMPAIGN_STATUS_CHOICES = [
    ("DRAFT", "Draft"),
    ("UPCOMING", "Upcoming"),
    ("IN_PROGRESS", "In progress"),
    ("COMPLETED", "Completed"),
    ("FORCE_STOPPED", "Force stopped"),
]
PRIZE_KIND_CHOICES = [
    ("TOKEN", "Token"),
    ("MERCHANDISE", "Merchandise"),
    ("COIN", "Coin"),
    ("LOGO", "Logo"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Campaign",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                (
                    "kind",
                    models.CharField(
                        choices=[("GIVEAWAY", "GiveAway"), ("RAFFLE", "Raffle"), ("CHALLENGE", "Challenge")],
                        default="GIVEAWAY",
                        max_length=16,
                    ),
                ),
                ("status", models.CharField(choices=CAMPAIGN_STATUS_CHOICES, default="DRAFT", max_length=16)),
                ("start_date", models.DateTimeField()),
                ("end_date", models.DateTimeField()),
                ("coin_usage_enabled", models.BooleanField(default=False)),
                ("segment_ids", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["status", "start_date"], name="campaign_status_start_idx"),
                    models.Index(fields=["status", "end_date"], name="campaign_status_end_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="RewardInventory",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "kind",
                    models.CharField(
                        choices=[("TOKEN_POOL", "Token pool"), ("COIN_SOURCE", "Coin source")], max_length=16
                    ),
                ),
                ("external_id", models.CharField(max_length=128)),
                ("name", models.CharField(blank=True, max_length=255)),
                ("total", models.BigIntegerField(default=0)),
                ("distributed", models.BigIntegerField(default=0)),
                ("valid_from", models.DateTimeField(blank=True, null=True)),
                ("valid_until", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "verbose_name_plural": "reward inventories",
                "constraints": [
                    models.UniqueConstraint(fields=("kind", "external_id"), name="uniq_inventory_kind_external_id"),
                    models.CheckConstraint(
                        condition=models.Q(("distributed__gte", 0)), name="inventory_distributed_non_negative"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("distributed__lte", models.F("total"))),
                        name="inventory_distributed_within_total",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CampaignStatusChange",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("from_status", models.CharField(choices=CAMPAIGN_STATUS_CHOICES, max_length=16)),
                ("to_status", models.CharField(choices=CAMPAIGN_STATUS_CHOICES, max_length=16)),
                ("reason", models.CharField(blank=True, max_length=255)),
                ("changed_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "campaign",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="status_changes",
                        to="giveaways.campaign",
                    ),
                ),
            ],
            options={"ordering": ["changed_at", "pk"]},
        ),
        migrations.CreateModel(
            name="GiveAwayRule",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("prize_kind", models.CharField(choices=PRIZE_KIND_CHOICES, max_length=16)),
                ("action_id", models.CharField(blank=True, max_length=128)),
                ("minimum_count", models.PositiveIntegerField(default=1)),
                ("quantity_per_gift", models.PositiveIntegerField(default=1)),
                ("can_repeat", models.BooleanField(default=False)),
                ("org_id", models.CharField(blank=True, max_length=128, null=True)),
                ("rule_start", models.DateTimeField(blank=True, null=True)),
                ("rule_end", models.DateTimeField(blank=True, null=True)),
                ("all_time", models.BooleanField(default=False)),
                ("raw_config", models.TextField(blank=True)),
                (
                    "rule_format",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("STRUCTURED", "Structured"),
                            ("LEGACY_KEYWORD", "Legacy keyword"),
                            ("CUSTOM_OBJECTIVE", "Custom objective"),
                            ("DIRECT_OBJECTIVE_ID", "Direct objective id"),
                        ],
                        max_length=24,
                    ),
                ),
                ("normalized_at", models.DateTimeField(blank=True, null=True)),
                ("config_error", models.TextField(blank=True)),
                (
                    "campaign",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="giveaway_rule",
                        to="giveaways.campaign",
                    ),
                ),
                (
                    "coin_source",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="coin_rules",
                        to="giveaways.rewardinventory",
                    ),
                ),
                (
                    "token_pool",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="token_rules",
                        to="giveaways.rewardinventory",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("minimum_count__gte", 1)), name="rule_minimum_count_positive"),
                    models.CheckConstraint(condition=models.Q(("quantity_per_gift__gt", 0)), name="rule_quantity_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WinnerRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("user_id", models.CharField(max_length=128)),
                ("prize_kind", models.CharField(choices=PRIZE_KIND_CHOICES, max_length=16)),
                ("quantity", models.BigIntegerField()),
                ("awarded_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("distribution_reference", models.CharField(blank=True, max_length=255)),
                ("repeatable", models.BooleanField(default=False)),
                (
                    "campaign",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="winners",
                        to="giveaways.campaign",
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["campaign", "user_id"], name="winner_campaign_user_idx")],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("repeatable", False)),
                        fields=("user_id", "campaign"),
                        name="uniq_winner_user_campaign",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="ActivityConsumption",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("user_id", models.CharField(max_length=128)),
                ("event_id", models.CharField(max_length=128)),
                ("consumed_at", models.DateTimeField(auto_now_add=True)),
                (
                    "campaign",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="consumed_events",
                        to="giveaways.campaign",
                    ),
                ),
                (
                    "winner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="consumed_events",
                        to="giveaways.winnerrecord",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("campaign", "event_id"), name="uniq_consumed_campaign_event")
                ],
            },
        ),
    ]
