from django.contrib import admin, messages

from .exceptions import InvalidStatusTransition
from .models import (
    ActivityConsumption,
    Campaign,
    CampaignStatusChange,
    GiveAwayRule,
    RewardInventory,
    WinnerRecord,
)


@admin.action(description="Force stop selected campaigns")
def force_stop(modeladmin, request, queryset):
    for campaign in queryset:
        try:
            campaign.force_stop(reason=f"admin:{request.user}")
        except InvalidStatusTransition as exc:
            modeladmin.message_user(request, str(exc), level=messages.WARNING)


@admin.register(Campaign)
class CampaignAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "kind", "status", "start_date", "end_date", "coin_usage_enabled")
    list_filter = ("kind", "status")
    readonly_fields = ("coin_usage_enabled",)
    actions = [force_stop]


@admin.register(GiveAwayRule)
class GiveAwayRuleAdmin(admin.ModelAdmin):
    list_display = ("campaign", "prize_kind", "action_id", "minimum_count", "can_repeat", "rule_format", "config_error")
    readonly_fields = ("rule_format", "normalized_at", "config_error")


admin.site.register(RewardInventory)
admin.site.register(WinnerRecord)
admin.site.register(ActivityConsumption)
admin.site.register(CampaignStatusChange)
