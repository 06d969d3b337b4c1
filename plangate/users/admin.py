from django.contrib import admin
from django.contrib.auth import admin as auth_admin
from django.utils.translation import gettext_lazy as _

from plangate.users.models import Membership
from plangate.users.models import Organization
from plangate.users.models import PagePermission
from plangate.users.models import User


@admin.register(User)
class UserAdmin(auth_admin.UserAdmin):
    fieldsets = (
        (None, {"fields": ("username", "password")}),
        (_("Personal info"), {"fields": ("name", "email")}),
        (
            _("Permissions"),
            {
                "fields": (
                    "is_active",
                    "is_staff",
                    "is_superuser",
                    "groups",
                    "user_permissions",
                ),
            },
        ),
        (_("Important dates"), {"fields": ("last_login", "date_joined")}),
    )
    list_display = ["username", "name", "email", "is_superuser"]
    search_fields = ["name", "username", "email"]


@admin.register(Membership)
class MembershipAdmin(admin.ModelAdmin):
    list_display = ["user", "org", "role", "is_active"]
    list_filter = ["is_active", "role"]
    search_fields = ["user__username", "user__name", "org__name"]


@admin.register(Organization)
class OrganizationAdmin(admin.ModelAdmin):
    """
    Billing fields are read-only here: edits must go through the plan change
    service or webhook reconciliation so ``billing_version`` stays honest.
    """

    list_display = [
        "name",
        "slug",
        "plan_id",
        "billing_status",
        "trial_ends_at",
        "cancellation_effective_at",
    ]
    list_filter = ["plan_id", "billing_status"]
    search_fields = ["name", "slug", "subscription_customer_id", "subscription_id"]
    readonly_fields = [
        "plan_id",
        "billing_status",
        "trial_started_at",
        "trial_ends_at",
        "trial_plan_id",
        "trial_ended_at",
        "cancellation_effective_at",
        "subscription_provider",
        "subscription_id",
        "subscription_customer_id",
        "subscription_price_id",
        "subscription_current_period_end",
        "subscription_event_at",
        "billing_version",
    ]


@admin.register(PagePermission)
class PagePermissionAdmin(admin.ModelAdmin):
    list_display = ["org", "user", "page", "can_access", "modified"]
    list_filter = ["page", "can_access"]
    search_fields = ["user__username", "org__name"]
