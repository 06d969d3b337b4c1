"""
Billing constants for the subscription engine.

These enums are the closed internal vocabulary of the billing module. Values
coming from the payment processor are mapped onto them at the boundary (see
``plangate.billing.reconciler``) before any business logic runs.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class PlanId(models.TextChoices):
    """
    Identifiers of the plans in the static catalog.

    FREE is the default plan: it is always present, costs nothing and needs no
    processor subscription.
    """

    FREE = "free", _("Starter")
    PRO = "pro", _("Pro")
    ULTRA = "ultra", _("Ultra")


class BillingStatus(models.TextChoices):
    """
    Coarse lifecycle stage of an organization's billing.

    Typical flow:
        ACTIVE (free) → TRIALING → ACTIVE (paid)
        TRIALING → TRIAL_EXPIRED (trial ran out, detected lazily on read)
        ACTIVE → CANCELED (processor reports the subscription ended)
    """

    TRIALING = "trialing", _("Trial")
    ACTIVE = "active", _("Active")
    TRIAL_EXPIRED = "trial_expired", _("Trial Expired")
    CANCELED = "canceled", _("Canceled")


class PageFeature(models.TextChoices):
    """Product areas a plan can unlock."""

    DASHBOARD = "dashboard", _("Dashboard")
    ANALYTICS = "analytics", _("Analytics")
    REPORTS = "reports", _("Reports")
    PROJECTS = "projects", _("Projects")
    TEAM = "team", _("Team")


class PriceInterval(models.TextChoices):
    MONTH = "month", _("Monthly")
    YEAR = "year", _("Yearly")


# Statuses under which the organization no longer holds a paid plan.
NON_PAID_STATUSES = frozenset({BillingStatus.CANCELED, BillingStatus.TRIAL_EXPIRED})

# Statuses under which processor subscription ids are adopted as live.
LIVE_STATUSES = frozenset({BillingStatus.ACTIVE, BillingStatus.TRIALING})

SUBSCRIPTION_PROVIDER_STRIPE = "stripe"

# Processor subscription status → internal status. Anything not listed maps
# to ACTIVE so status is never left undefined.
STRIPE_STATUS_MAP = {
    "trialing": BillingStatus.TRIALING,
    "active": BillingStatus.ACTIVE,
    "past_due": BillingStatus.ACTIVE,
    "incomplete": BillingStatus.ACTIVE,
    "canceled": BillingStatus.CANCELED,
    "unpaid": BillingStatus.CANCELED,
    "incomplete_expired": BillingStatus.TRIAL_EXPIRED,
}

# Metadata keys written on checkout sessions and subscriptions so webhooks can
# be correlated back to an organization and plan.
METADATA_ORG_KEY = "organizationId"
METADATA_PLAN_KEY = "planId"

# Default number of invoices returned by the invoice listing.
DEFAULT_INVOICE_LIMIT = 12

# Where checkout and the customer portal send the user back to.
BILLING_PAGE_PATH = "/billing/"
