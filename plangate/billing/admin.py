"""
Django admin configuration for billing models.

Both models are audit trails and read-only here:
- PlanChange: who moved which organization between plans, and why
- ProcessedWebhookEvent: Stripe events received and what we did with them
"""

from django.contrib import admin

from plangate.billing.models import PlanChange
from plangate.billing.models import ProcessedWebhookEvent


@admin.register(PlanChange)
class PlanChangeAdmin(admin.ModelAdmin):
    list_display = [
        "org",
        "old_plan_id",
        "new_plan_id",
        "new_status",
        "change_type",
        "source",
        "actor",
        "created",
    ]
    list_filter = ["source", "change_type", "new_plan_id"]
    search_fields = ["org__name", "org__slug", "actor__username"]
    readonly_fields = [
        "org",
        "actor",
        "old_plan_id",
        "new_plan_id",
        "old_status",
        "new_status",
        "change_type",
        "source",
        "created",
    ]

    def has_add_permission(self, request):
        return False


@admin.register(ProcessedWebhookEvent)
class ProcessedWebhookEventAdmin(admin.ModelAdmin):
    list_display = [
        "event_id",
        "event_type",
        "org",
        "outcome",
        "delivery_count",
        "created",
    ]
    list_filter = ["outcome", "event_type"]
    search_fields = ["event_id", "org__name"]
    readonly_fields = [
        "event_id",
        "event_type",
        "event_created_at",
        "org",
        "outcome",
        "delivery_count",
        "created",
        "modified",
    ]

    def has_add_permission(self, request):
        return False
