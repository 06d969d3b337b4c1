"""
Read-time derivation of an organization's effective billing state.

Nothing computed here is ever persisted. Expired trials and cancellation
dates that have passed are detected lazily on every read, so there is no
background job flipping statuses and stored fields may lag behind the clock
without the rest of the system ever seeing stale entitlements.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from typing import Any

from plangate.billing.constants import NON_PAID_STATUSES
from plangate.billing.constants import BillingStatus
from plangate.billing.plans import Plan
from plangate.billing.plans import default_plan
from plangate.billing.plans import feature_map
from plangate.billing.plans import is_valid_plan_id
from plangate.billing.plans import plan_by_id
from plangate.billing.state import BillingState

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True)
class SubscriptionMirror:
    """Processor linkage, passed through for display only."""

    provider: str | None = None
    subscription_id: str | None = None
    customer_id: str | None = None
    price_id: str | None = None
    current_period_end: datetime | None = None


@dataclass(frozen=True)
class DerivedBilling:
    effective_plan_id: str
    effective_status: str
    trial_remaining_ms: int
    features: dict[str, bool]
    plan: Plan
    trial_started_at: datetime | None
    trial_ends_at: datetime | None
    trial_plan_id: str | None
    trial_ended_at: datetime | None
    cancellation_effective_at: datetime | None
    subscription: SubscriptionMirror

    @property
    def trial_days_remaining(self) -> int:
        return self.trial_remaining_ms // (24 * 60 * 60 * 1000)

    def as_dict(self) -> dict[str, Any]:
        """JSON-ready payload served by the subscription endpoint."""
        return {
            "plan_id": str(self.effective_plan_id),
            "billing_status": str(self.effective_status),
            "trial_remaining_ms": self.trial_remaining_ms,
            "features": dict(self.features),
            "plan": {
                "id": str(self.plan.id),
                "name": self.plan.name,
                "description": self.plan.description,
                "price": self.plan.price_display,
                "price_interval": str(self.plan.interval),
                "trial_days": self.plan.trial_days,
            },
            "trial_started_at": _iso(self.trial_started_at),
            "trial_ends_at": _iso(self.trial_ends_at),
            "trial_plan_id": self.trial_plan_id,
            "trial_ended_at": _iso(self.trial_ended_at),
            "cancellation_effective_at": _iso(self.cancellation_effective_at),
            "subscription_provider": self.subscription.provider,
            "subscription_id": self.subscription.subscription_id,
            "subscription_customer_id": self.subscription.customer_id,
            "subscription_price_id": self.subscription.price_id,
            "subscription_current_period_end": _iso(
                self.subscription.current_period_end,
            ),
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def resolve_plan_id(raw_plan_id: str | None) -> str:
    """Stored plan id if it names a catalog plan, else the default plan."""
    if is_valid_plan_id(raw_plan_id):
        return raw_plan_id
    return default_plan()


def derive(state: BillingState, now: datetime) -> DerivedBilling:
    """
    Compute the effective plan, status and entitlements at ``now``.

    Pure and deterministic: the same state and clock always give the same
    result, and nothing is written.
    """
    plan_id = resolve_plan_id(state.plan_id)
    status = state.billing_status or BillingStatus.ACTIVE
    if status not in BillingStatus.values:
        status = BillingStatus.ACTIVE

    trial_ends_at = state.trial_ends_at
    cancellation_at = state.cancellation_effective_at

    # Lazy trial expiry.
    if status == BillingStatus.TRIALING and trial_ends_at and trial_ends_at < now:
        status = BillingStatus.TRIAL_EXPIRED

    # Non-paid statuses always fall back to the default plan. A still-future
    # cancellation date under such a status counts as already ended.
    if status in NON_PAID_STATUSES:
        plan_id = default_plan()

    # Scheduled cancellation that arrived before the processor told us.
    if (
        cancellation_at is not None
        and cancellation_at <= now
        and status != BillingStatus.TRIALING
    ):
        plan_id = default_plan()

    trial_remaining_ms = 0
    if status == BillingStatus.TRIALING and trial_ends_at:
        remaining = trial_ends_at - now
        trial_remaining_ms = max(0, int(remaining.total_seconds() * 1000))

    trial_plan_id = (
        state.trial_plan_id if is_valid_plan_id(state.trial_plan_id) else None
    )

    return DerivedBilling(
        effective_plan_id=plan_id,
        effective_status=status,
        trial_remaining_ms=trial_remaining_ms,
        features=feature_map(plan_id),
        plan=plan_by_id(plan_id),
        trial_started_at=state.trial_started_at,
        trial_ends_at=trial_ends_at,
        trial_plan_id=trial_plan_id,
        trial_ended_at=state.trial_ended_at,
        cancellation_effective_at=cancellation_at,
        subscription=SubscriptionMirror(
            provider=state.subscription_provider,
            subscription_id=state.subscription_id,
            customer_id=state.subscription_customer_id,
            price_id=state.subscription_price_id,
            current_period_end=state.subscription_current_period_end,
        ),
    )


def derive_for_org(org, now: datetime) -> DerivedBilling:
    """Derive straight from an organization instance (or ``None``)."""
    return derive(BillingState.from_org(org), now)
