"""
Reconciliation of processor subscription events into stored billing fields.

Processor payloads are duck-typed; they are normalized at the boundary into a
``ProcessorEvent`` with the processor status already mapped onto the closed
``BillingStatus`` enum. ``reconcile`` then derives a complete replacement of
the billing fields from that snapshot, so applying the same event twice gives
the same record (deliveries are at-least-once).

Out-of-order delivery is not defended against by default: an older event
that arrives after a newer one overwrites it. ``subscription_event_at``
records the creation time of the last reconciled event so staleness can be
detected and logged; setting ``BILLING_IGNORE_STALE_WEBHOOKS`` makes callers
skip such events instead.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC
from datetime import datetime
from typing import Any

from plangate.billing.constants import LIVE_STATUSES
from plangate.billing.constants import METADATA_ORG_KEY
from plangate.billing.constants import METADATA_PLAN_KEY
from plangate.billing.constants import NON_PAID_STATUSES
from plangate.billing.constants import STRIPE_STATUS_MAP
from plangate.billing.constants import SUBSCRIPTION_PROVIDER_STRIPE
from plangate.billing.constants import BillingStatus
from plangate.billing.plans import default_plan
from plangate.billing.plans import is_valid_plan_id
from plangate.billing.plans import plan_for_stripe_price
from plangate.billing.state import BillingPatch
from plangate.billing.state import BillingState

# Older metadata key written by earlier checkout sessions.
LEGACY_METADATA_ORG_KEY = "org_id"


@dataclass(frozen=True)
class ProcessorEvent:
    """A processor subscription snapshot in internal vocabulary."""

    org_id: str | None
    status: str
    plan_id: str | None = None
    subscription_id: str | None = None
    customer_id: str | None = None
    price_id: str | None = None
    current_period_end: datetime | None = None
    cancel_at: datetime | None = None
    cancel_at_period_end: bool = False
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    created_at: datetime | None = None


def map_processor_status(raw_status: str | None) -> str:
    """Map a processor subscription status onto ``BillingStatus``."""
    return STRIPE_STATUS_MAP.get(raw_status or "", BillingStatus.ACTIVE)


def resolve_event_plan(event: ProcessorEvent, state: BillingState) -> str:
    """
    Plan an event refers to.

    Priority: event metadata, then the price id matched against the catalog,
    then the organization's current plan, then the default plan.
    """
    if is_valid_plan_id(event.plan_id):
        return event.plan_id
    mapped = plan_for_stripe_price(event.price_id)
    if mapped:
        return mapped
    if is_valid_plan_id(state.plan_id):
        return state.plan_id
    return default_plan()


def is_stale(event: ProcessorEvent, state: BillingState) -> bool:
    """True when ``event`` is strictly older than the last reconciled event."""
    return (
        event.created_at is not None
        and state.subscription_event_at is not None
        and event.created_at < state.subscription_event_at
    )


def is_superseded(event: ProcessorEvent, state: BillingState) -> bool:
    """
    True when ``event`` ends a subscription other than the one on record.

    An organization that switched subscriptions on Stripe can still receive
    the old one's cancellation; it must not cancel the current one.
    """
    return (
        event.status not in LIVE_STATUSES
        and event.subscription_id is not None
        and state.subscription_id is not None
        and event.subscription_id != state.subscription_id
    )


def _cancellation_effective_at(
    event: ProcessorEvent,
    now: datetime,
) -> datetime | None:
    if event.cancel_at and event.cancel_at > now:
        return event.cancel_at
    if (
        event.cancel_at_period_end
        and event.current_period_end
        and event.current_period_end > now
    ):
        return event.current_period_end
    return None


def reconcile(
    state: BillingState,
    event: ProcessorEvent,
    now: datetime,
) -> BillingPatch:
    """
    Compute the patch that brings ``state`` in line with ``event``.

    The patch always carries the full set of billing fields the event speaks
    to, so it replaces rather than increments.
    """
    status = event.status
    live = status in LIVE_STATUSES

    plan_id = resolve_event_plan(event, state)
    if status in NON_PAID_STATUSES:
        plan_id = default_plan()

    patch: BillingPatch = {
        "plan_id": plan_id,
        "billing_status": status,
        # An explicit renewal clears a stale pending cancellation.
        "cancellation_effective_at": (
            _cancellation_effective_at(event, now) if live else None
        ),
        "subscription_provider": SUBSCRIPTION_PROVIDER_STRIPE if live else None,
        "subscription_id": (
            (event.subscription_id or state.subscription_id) if live else None
        ),
        "subscription_price_id": (
            (event.price_id or state.subscription_price_id) if live else None
        ),
        # The customer outlives any one subscription: portal and invoice
        # history need it after cancellation too.
        "subscription_customer_id": (
            event.customer_id or state.subscription_customer_id
        ),
        "subscription_current_period_end": (
            event.current_period_end
            or (state.subscription_current_period_end if live else None)
        ),
    }

    if event.created_at is not None:
        patch["subscription_event_at"] = event.created_at

    if event.trial_start is not None:
        patch["trial_started_at"] = event.trial_start

    if event.trial_end is not None:
        patch["trial_ends_at"] = event.trial_end
        if status == BillingStatus.TRIALING:
            # A recorded trial end is permanent; it's what blocks a second trial.
            patch["trial_plan_id"] = plan_id
            patch["trial_ended_at"] = state.trial_ended_at
        else:
            patch["trial_ended_at"] = state.trial_ended_at or event.trial_end
    elif (
        status != BillingStatus.TRIALING
        and state.trial_ended_at is None
        and state.trial_ends_at is not None
    ):
        # A trial we already knew about is over now.
        patch["trial_ended_at"] = min(state.trial_ends_at, now)

    return patch


# -----------------------------------------------------------------------------
# Stripe payload normalization
# -----------------------------------------------------------------------------


def stripe_field(obj: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a dict or a ``stripe.StripeObject``."""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return getattr(obj, key, default)
    return default if value is None else value


def from_epoch(value: Any) -> datetime | None:
    """Stripe epoch seconds → aware UTC datetime."""
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def stripe_id(value: Any) -> str | None:
    """Stripe fields may be an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value or None
    return stripe_field(value, "id")


def _first_item(subscription: Any) -> Any:
    items = stripe_field(stripe_field(subscription, "items"), "data") or []
    return items[0] if items else None


def extract_org_id(stripe_object: Any) -> str | None:
    """Organization id from metadata (checkout sessions and subscriptions)."""
    metadata = stripe_field(stripe_object, "metadata") or {}
    org_id = stripe_field(metadata, METADATA_ORG_KEY) or stripe_field(
        metadata,
        LEGACY_METADATA_ORG_KEY,
    )
    if org_id:
        return str(org_id)
    return None


def _current_period_end(subscription: Any) -> datetime | None:
    # Newer API versions moved the period onto the subscription item.
    value = stripe_field(subscription, "current_period_end")
    if not value:
        value = stripe_field(_first_item(subscription), "current_period_end")
    return from_epoch(value)


def normalize_stripe_subscription(
    subscription: Any,
    *,
    event_created: Any = None,
) -> ProcessorEvent:
    """Normalize a Stripe subscription (created/updated/retrieved)."""
    item = _first_item(subscription)
    metadata = stripe_field(subscription, "metadata") or {}
    return ProcessorEvent(
        org_id=extract_org_id(subscription),
        status=map_processor_status(stripe_field(subscription, "status")),
        plan_id=stripe_field(metadata, METADATA_PLAN_KEY),
        subscription_id=stripe_field(subscription, "id"),
        customer_id=stripe_id(stripe_field(subscription, "customer")),
        price_id=stripe_id(stripe_field(item, "price")),
        current_period_end=_current_period_end(subscription),
        cancel_at=from_epoch(stripe_field(subscription, "cancel_at")),
        cancel_at_period_end=bool(stripe_field(subscription, "cancel_at_period_end")),
        trial_start=from_epoch(stripe_field(subscription, "trial_start")),
        trial_end=from_epoch(stripe_field(subscription, "trial_end")),
        created_at=from_epoch(event_created),
    )


def normalize_stripe_deletion(
    subscription: Any,
    *,
    event_created: Any = None,
) -> ProcessorEvent:
    """
    Normalize ``customer.subscription.deleted``.

    The subscription is gone, so no price is carried and the plan is the
    default one. Its id is kept only to tell a replaced subscription's end
    from the current one's.
    """
    status = stripe_field(subscription, "status") or "canceled"
    return ProcessorEvent(
        org_id=extract_org_id(subscription),
        status=map_processor_status(status),
        plan_id=default_plan(),
        subscription_id=stripe_field(subscription, "id"),
        customer_id=stripe_id(stripe_field(subscription, "customer")),
        price_id=None,
        current_period_end=_current_period_end(subscription),
        cancel_at=from_epoch(stripe_field(subscription, "ended_at")),
        cancel_at_period_end=False,
        trial_start=from_epoch(stripe_field(subscription, "trial_start")),
        trial_end=from_epoch(stripe_field(subscription, "trial_end")),
        created_at=from_epoch(event_created),
    )
