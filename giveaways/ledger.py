"""Winner ledger and inventory primitives.

The storage layer is the source of truth here: duplicate winners are rejected
by the partial unique index on WinnerRecord, consumed events by the unique
index on ActivityConsumption, and over-allocation by a conditional UPDATE on
RewardInventory. None of these read a number first and write it back later.
"""

from datetime import datetime
from typing import Iterable

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from .exceptions import DuplicateWinnerConflict, InventoryExhausted
from .models import ActivityConsumption, Campaign, GiveAwayRule, RewardInventory, WinnerRecord


def record_winner(
    campaign: Campaign,
    rule: GiveAwayRule,
    user_id: str,
    quantity: int,
    distribution_reference: str = "",
    awarded_at: datetime | None = None,
) -> WinnerRecord:
    try:
        with transaction.atomic():
            return WinnerRecord.objects.create(
                campaign=campaign,
                user_id=user_id,
                prize_kind=rule.prize_kind,
                quantity=quantity,
                distribution_reference=distribution_reference,
                repeatable=rule.can_repeat,
                awarded_at=awarded_at or timezone.now(),
            )
    except IntegrityError as exc:
        raise DuplicateWinnerConflict(f"user {user_id} already won campaign {campaign.pk}") from exc


def mark_consumed(winner: WinnerRecord, event_ids: Iterable[str]) -> int:
    rows = [
        ActivityConsumption(campaign_id=winner.campaign_id, user_id=winner.user_id, event_id=event_id, winner=winner)
        for event_id in event_ids
    ]
    if not rows:
        return 0
    try:
        with transaction.atomic():
            ActivityConsumption.objects.bulk_create(rows)
    except IntegrityError as exc:
        raise DuplicateWinnerConflict(
            f"activity of user {winner.user_id} already funded a reward in campaign {winner.campaign_id}"
        ) from exc
    return len(rows)


def reserve_inventory(inventory_id: int, amount: int) -> None:
    """Atomically add ``amount`` to ``distributed`` if it still fits in ``total``."""
    if amount <= 0:
        return
    updated = RewardInventory.objects.filter(pk=inventory_id, distributed__lte=F("total") - amount).update(
        distributed=F("distributed") + amount
    )
    if not updated:
        raise InventoryExhausted(f"inventory {inventory_id} cannot cover {amount} more")


def available_inventory(inventory_id: int) -> int:
    inventory = RewardInventory.objects.only("total", "distributed").get(pk=inventory_id)
    return inventory.available


def existing_winner_ids(campaign_id: int, user_ids: Iterable[str]) -> set[str]:
    return set(
        WinnerRecord.objects.filter(campaign_id=campaign_id, user_id__in=list(user_ids)).values_list(
            "user_id", flat=True
        )
    )


def consumed_event_ids(campaign_id: int, user_id: str) -> set[str]:
    return set(
        ActivityConsumption.objects.filter(campaign_id=campaign_id, user_id=user_id).values_list(
            "event_id", flat=True
        )
    )
