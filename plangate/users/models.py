from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import CharField
from django.utils.text import slugify
from django.utils.translation import gettext_lazy as _
from model_utils.models import TimeStampedModel

from plangate.billing.constants import BillingStatus
from plangate.billing.constants import PageFeature
from plangate.billing.constants import PlanId
from plangate.users.constants import BILLING_MANAGER_ROLES
from plangate.users.constants import RESERVED_ORG_SLUGS
from plangate.users.constants import RoleCode


class Organization(TimeStampedModel):
    """
    The tenant: the unit of billing.

    Billing state lives directly on the organization. Read it through
    ``plangate.billing.derivation.derive_for_org`` rather than the raw fields:
    stored values may lag the clock (an expired trial still says "trialing"
    until something rewrites it) and derivation corrects for that.

    Billing fields are only written through
    ``plangate.billing.storage.apply_billing_patch``, which bumps
    ``billing_version`` on every write.
    """

    name = CharField(
        max_length=255,
        help_text=_("Name of the organization, e.g. 'My Organization'"),
    )
    slug = models.SlugField(unique=True, blank=True)

    # Plan and lifecycle
    plan_id = models.CharField(
        max_length=20,
        choices=PlanId.choices,
        default=PlanId.FREE,
        help_text=_("Plan on record. May lag; derivation corrects it."),
    )
    billing_status = models.CharField(
        max_length=20,
        choices=BillingStatus.choices,
        default=BillingStatus.ACTIVE,
    )

    # Trial tracking
    trial_started_at = models.DateTimeField(null=True, blank=True)
    trial_ends_at = models.DateTimeField(null=True, blank=True)
    trial_plan_id = models.CharField(
        max_length=20,
        choices=PlanId.choices,
        null=True,
        blank=True,
        help_text=_("Paid plan the trial was (or is) for."),
    )
    trial_ended_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text=_(
            "Set once, when the first trial concludes. Its presence disables "
            "further trials.",
        ),
    )
    cancellation_effective_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text=_("When a scheduled cancellation of the paid plan takes effect."),
    )

    # Payment processor linkage (pass-through, never interpreted)
    subscription_provider = models.CharField(max_length=32, null=True, blank=True)
    subscription_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text=_("Stripe Subscription ID (sub_xxx)."),
    )
    subscription_customer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text=_("Stripe Customer ID (cus_xxx)."),
    )
    subscription_price_id = models.CharField(max_length=255, null=True, blank=True)
    subscription_current_period_end = models.DateTimeField(null=True, blank=True)
    subscription_event_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text=_("Creation time of the last processor event reconciled."),
    )

    billing_version = models.PositiveIntegerField(
        default=0,
        editable=False,
        help_text=_("Compare-and-set token for billing writes."),
    )

    class Meta:
        indexes = [
            models.Index(
                fields=["subscription_customer_id"],
                name="org_subscription_customer_idx",
            ),
            models.Index(
                fields=["subscription_id"],
                name="org_subscription_id_idx",
            ),
        ]

    def __str__(self):
        return self.name

    def clean(self):
        super().clean()
        slug = self.slug or slugify(self.name)
        if slug in RESERVED_ORG_SLUGS:
            raise ValidationError({"name": _("This organization name is reserved.")})

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)
        super().save(*args, **kwargs)


class User(AbstractUser):
    """
    Custom user model.

    ``is_superuser`` marks a platform super-operator: such users manage
    billing for any organization and bypass per-user page permissions.
    """

    # First and last name do not cover name patterns around the globe
    name = CharField(_("Name of User"), blank=True, max_length=255)
    first_name = None  # type: ignore[assignment]
    last_name = None  # type: ignore[assignment]

    orgs = models.ManyToManyField(
        "Organization",
        through="Membership",
        related_name="users",
        blank=True,
    )

    @property
    def is_super_operator(self) -> bool:
        return bool(self.is_superuser)


class Membership(TimeStampedModel):
    """
    Through table: a user's role in one organization.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="memberships",
    )
    org = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        related_name="memberships",
    )
    role = models.CharField(
        max_length=16,
        choices=RoleCode.choices,
        default=RoleCode.MEMBER,
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        unique_together = [("user", "org")]
        indexes = [
            models.Index(fields=["org", "user"], name="membership_org_user_idx"),
        ]

    def __str__(self):
        return f"user '{self.user.username}' in org '{self.org.name}'"

    @property
    def is_billing_manager(self) -> bool:
        return self.is_active and self.role in BILLING_MANAGER_ROLES


class PagePermission(TimeStampedModel):
    """
    Explicit per-user page grant within an organization.

    Absent a row, members default to allowed. Only consulted for the MEMBER
    role; owners and admins bypass grants (but never the plan's feature gate).
    """

    org = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        related_name="page_permissions",
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="page_permissions",
    )
    page = models.CharField(max_length=32, choices=PageFeature.choices)
    can_access = models.BooleanField(default=True)
    updated_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["org", "user", "page"],
                name="unique_page_permission",
            ),
        ]

    def __str__(self):
        return f"{self.user_id}@{self.org_id}:{self.page}={self.can_access}"
