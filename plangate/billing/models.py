"""
Billing models.

Key design decisions:
- The plan catalog is code (``plangate.billing.plans``), not a table.
- Billing state lives on ``users.Organization``; there is no separate
  subscription table. The payment processor keeps its own subscription
  object and we mirror only what we need.
- The models here are audit trails: plan changes and processor events
  received. Neither is read by the derivation path.
"""

from django.conf import settings
from django.db import models
from model_utils.models import TimeStampedModel

from plangate.billing.constants import BillingStatus
from plangate.billing.constants import PlanId


class PlanChange(TimeStampedModel):
    """
    Audit log for plan changes.

    Records upgrades, downgrades and trial starts for:
    - Customer support history
    - Billing reconciliation against the processor
    """

    class Source(models.TextChoices):
        ADMIN = "admin", "Administrative"
        PROCESSOR = "processor", "Payment processor"
        MEMBERSHIP = "membership", "Membership change"

    org = models.ForeignKey(
        "users.Organization",
        on_delete=models.CASCADE,
        related_name="plan_changes",
    )
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    old_plan_id = models.CharField(max_length=20, choices=PlanId.choices)
    new_plan_id = models.CharField(max_length=20, choices=PlanId.choices)
    old_status = models.CharField(max_length=20, choices=BillingStatus.choices)
    new_status = models.CharField(max_length=20, choices=BillingStatus.choices)
    change_type = models.CharField(
        max_length=20,
        help_text="Type of change: upgrade, downgrade, or lateral.",
    )
    source = models.CharField(max_length=20, choices=Source.choices)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["-created"]

    def __str__(self) -> str:
        return f"{self.org_id}: {self.old_plan_id} → {self.new_plan_id}"


class ProcessedWebhookEvent(TimeStampedModel):
    """
    One row per processor event delivery we accepted.

    Deliveries are at-least-once, so the same ``event_id`` may arrive more
    than once; ``delivery_count`` tracks that. Reconciliation itself is
    idempotent and does not consult this table to decide what to do.
    """

    class Outcome(models.TextChoices):
        APPLIED = "applied", "Applied"
        IGNORED = "ignored", "Ignored event type"
        UNCORRELATED = "uncorrelated", "No matching organization"
        STALE = "stale", "Older than last applied event"
        SUPERSEDED = "superseded", "Ended a replaced subscription"
        FAILED = "failed", "Failed"

    event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100)
    event_created_at = models.DateTimeField(null=True, blank=True)
    org = models.ForeignKey(
        "users.Organization",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="webhook_events",
    )
    outcome = models.CharField(max_length=20, choices=Outcome.choices)
    delivery_count = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ["-created"]
        indexes = [models.Index(fields=["event_type"], name="webhook_event_type_idx")]

    def __str__(self) -> str:
        return f"{self.event_type} {self.event_id} ({self.outcome})"
