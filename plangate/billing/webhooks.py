"""
Stripe webhook processing.

The view hands us the raw body and signature header; we verify the signature
against ``STRIPE_WEBHOOK_SECRET`` before looking at anything else, then
normalize the event and reconcile it into the organization's billing fields.

Key events handled:
- customer.subscription.created / updated: mirror the subscription
- customer.subscription.deleted: back to the default plan
- checkout.session.completed: fetch the new subscription, then as above

Everything else is acknowledged and ignored so Stripe doesn't keep retrying
events we never meant to handle. Events we can't tie to an organization are
dropped with a warning. Storage failures propagate so the endpoint can answer
with a 5xx and Stripe redelivers; reconciliation is idempotent, so a retry is
always safe.

To test locally:
    stripe listen --forward-to localhost:8000/stripe/webhook/
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import replace
from typing import TYPE_CHECKING
from typing import Any

import stripe
from django.conf import settings
from django.db import DatabaseError
from django.db.models import F
from django.utils import timezone

from plangate.billing.constants import METADATA_PLAN_KEY
from plangate.billing.constants import BillingStatus
from plangate.billing.derivation import resolve_plan_id
from plangate.billing.exceptions import ConcurrentUpdateError
from plangate.billing.exceptions import InvalidWebhookError
from plangate.billing.exceptions import OrganizationNotFoundError
from plangate.billing.exceptions import ProcessorNotConfiguredError
from plangate.billing.models import PlanChange
from plangate.billing.models import ProcessedWebhookEvent
from plangate.billing.plan_changes import ChangeSource
from plangate.billing.plan_changes import get_change_type
from plangate.billing.plans import is_valid_plan_id
from plangate.billing.reconciler import extract_org_id
from plangate.billing.reconciler import from_epoch
from plangate.billing.reconciler import is_stale
from plangate.billing.reconciler import is_superseded
from plangate.billing.reconciler import normalize_stripe_deletion
from plangate.billing.reconciler import normalize_stripe_subscription
from plangate.billing.reconciler import reconcile
from plangate.billing.reconciler import stripe_field
from plangate.billing.reconciler import stripe_id
from plangate.billing.storage import apply_billing_patch

if TYPE_CHECKING:
    from datetime import datetime

    from plangate.billing.reconciler import ProcessorEvent
    from plangate.billing.state import BillingPatch
    from plangate.billing.state import BillingState
    from plangate.users.models import Organization

logger = logging.getLogger(__name__)

SUBSCRIPTION_CHANGED_EVENTS = frozenset(
    {
        "customer.subscription.created",
        "customer.subscription.updated",
    },
)
SUBSCRIPTION_DELETED_EVENT = "customer.subscription.deleted"
CHECKOUT_COMPLETED_EVENT = "checkout.session.completed"

Outcome = ProcessedWebhookEvent.Outcome


@dataclass(frozen=True)
class WebhookResult:
    event_id: str | None
    event_type: str
    outcome: str
    org_id: int | None = None


def verify_event(payload: bytes, signature: str | None) -> dict[str, Any]:
    """
    Check the Stripe signature and return the event as a plain dict.

    Raises:
        InvalidWebhookError: missing/invalid signature or unparseable body.
        ProcessorNotConfiguredError: no webhook secret configured.
    """
    if not signature:
        raise InvalidWebhookError("Missing Stripe signature")
    secret = settings.STRIPE_WEBHOOK_SECRET
    if not secret:
        raise ProcessorNotConfiguredError("Stripe webhook secret is not configured")

    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        raise InvalidWebhookError("Invalid signature") from e
    except ValueError as e:
        raise InvalidWebhookError("Invalid payload") from e

    # Work with plain dicts from here on; the reconciler reads either shape.
    return json.loads(payload)


def handle_event(
    event: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> WebhookResult:
    """Reconcile one verified Stripe event and record its delivery."""
    now = now or timezone.now()
    event_id = event.get("id")
    event_type = event.get("type") or ""
    event_created = event.get("created")
    stripe_object = (event.get("data") or {}).get("object") or {}

    processor_event = to_processor_event(event_type, stripe_object, event_created)
    if processor_event is None:
        logger.info("Ignoring Stripe event %s (%s)", event_type, event_id)
        _record_delivery(event_id, event_type, event_created, None, Outcome.IGNORED)
        return WebhookResult(event_id, event_type, Outcome.IGNORED)

    try:
        outcome, org = apply_processor_event(processor_event, now=now)
    except (ConcurrentUpdateError, DatabaseError):
        logger.exception(
            "Failed to apply Stripe event %s (%s) for org %s",
            event_type,
            event_id,
            processor_event.org_id,
        )
        _record_delivery(event_id, event_type, event_created, None, Outcome.FAILED)
        raise

    _record_delivery(event_id, event_type, event_created, org, outcome)
    return WebhookResult(
        event_id,
        event_type,
        outcome,
        org.pk if org is not None else None,
    )


def to_processor_event(
    event_type: str,
    stripe_object: Any,
    event_created: Any = None,
) -> ProcessorEvent | None:
    """Normalize a Stripe event payload, or ``None`` for events we ignore."""
    if event_type in SUBSCRIPTION_CHANGED_EVENTS:
        return normalize_stripe_subscription(
            stripe_object,
            event_created=event_created,
        )
    if event_type == SUBSCRIPTION_DELETED_EVENT:
        return normalize_stripe_deletion(stripe_object, event_created=event_created)
    if event_type == CHECKOUT_COMPLETED_EVENT:
        return _checkout_to_processor_event(stripe_object, event_created)
    return None


def _checkout_to_processor_event(
    session: Any,
    event_created: Any,
) -> ProcessorEvent | None:
    subscription_id = stripe_id(stripe_field(session, "subscription"))
    if not subscription_id:
        # One-off payments and setup sessions have no subscription.
        return None

    from plangate.billing.services import BillingService

    subscription = BillingService().retrieve_subscription(subscription_id)
    processor_event = normalize_stripe_subscription(
        subscription,
        event_created=event_created,
    )

    # Our checkout sessions carry the same metadata as the subscription they
    # create; use the session's when the subscription's is missing.
    if processor_event.org_id is None:
        org_id = extract_org_id(session) or stripe_field(
            session,
            "client_reference_id",
        )
        processor_event = replace(processor_event, org_id=org_id)
    if not is_valid_plan_id(processor_event.plan_id):
        session_metadata = stripe_field(session, "metadata") or {}
        processor_event = replace(
            processor_event,
            plan_id=stripe_field(session_metadata, METADATA_PLAN_KEY),
        )
    return processor_event


def _parse_org_id(value: Any) -> int | None:
    if value is None:
        return None
    value = str(value).strip()
    # isdigit() alone lets through characters like "²" that int() rejects.
    if not (value.isascii() and value.isdigit()):
        return None
    return int(value)


def apply_processor_event(
    event: ProcessorEvent,
    *,
    now: datetime,
) -> tuple[str, Organization | None]:
    """
    Reconcile ``event`` into its organization's stored billing fields.

    Returns the outcome and the organization (``None`` when uncorrelated).
    """
    org_id = _parse_org_id(event.org_id)
    if org_id is None:
        logger.warning(
            "Stripe subscription %s is missing organization metadata",
            event.subscription_id,
        )
        return Outcome.UNCORRELATED, None

    ignore_stale = getattr(settings, "BILLING_IGNORE_STALE_WEBHOOKS", False)
    captured: dict[str, Any] = {}

    def compute(state: BillingState) -> BillingPatch:
        captured["state"] = state
        captured["stale"] = is_stale(event, state)
        captured["superseded"] = is_superseded(event, state)
        if captured["superseded"] or (captured["stale"] and ignore_stale):
            return {}
        return reconcile(state, event, now)

    try:
        org, _patch = apply_billing_patch(org_id, compute)
    except OrganizationNotFoundError:
        logger.warning(
            "Stripe subscription %s references unknown organization %s",
            event.subscription_id,
            org_id,
        )
        return Outcome.UNCORRELATED, None

    if captured["superseded"]:
        logger.warning(
            "Ignoring end of Stripe subscription %s for org=%s: current "
            "subscription is %s",
            event.subscription_id,
            org.pk,
            captured["state"].subscription_id,
        )
        return Outcome.SUPERSEDED, org

    if captured["stale"]:
        logger.warning(
            "Out-of-order Stripe event for org=%s: event created %s, last "
            "applied %s (%s)",
            org.pk,
            event.created_at,
            captured["state"].subscription_event_at,
            "skipped" if ignore_stale else "applied anyway",
        )
        if ignore_stale:
            return Outcome.STALE, org

    _audit_processor_change(org, captured["state"])
    logger.info(
        "Reconciled Stripe subscription %s for org=%s: plan=%s status=%s",
        event.subscription_id,
        org.pk,
        org.plan_id,
        org.billing_status,
    )
    return Outcome.APPLIED, org


def _audit_processor_change(org: Organization, before: BillingState) -> None:
    old_plan_id = resolve_plan_id(before.plan_id)
    old_status = before.billing_status or BillingStatus.ACTIVE
    if old_plan_id == org.plan_id and old_status == org.billing_status:
        return
    PlanChange.objects.create(
        org=org,
        old_plan_id=old_plan_id,
        new_plan_id=org.plan_id,
        old_status=old_status,
        new_status=org.billing_status,
        change_type=get_change_type(old_plan_id, org.plan_id).value,
        source=ChangeSource.PROCESSOR.value,
    )


def _record_delivery(
    event_id: str | None,
    event_type: str,
    event_created: Any,
    org: Organization | None,
    outcome: str,
) -> None:
    if not event_id:
        return
    record, created = ProcessedWebhookEvent.objects.get_or_create(
        event_id=event_id,
        defaults={
            "event_type": event_type,
            "event_created_at": from_epoch(event_created),
            "org": org,
            "outcome": outcome,
        },
    )
    if created:
        return
    ProcessedWebhookEvent.objects.filter(pk=record.pk).update(
        delivery_count=F("delivery_count") + 1,
        outcome=outcome,
        org=org or record.org,
        modified=timezone.now(),
    )
    logger.info(
        "Stripe event %s delivered again (%d previous deliveries)",
        event_id,
        record.delivery_count,
    )
