"""
Tests for Stripe webhook processing.

Signatures are computed for real against the test webhook secret so the
Stripe library's own verification runs. Only calls that would reach the
Stripe API are mocked.
"""

import json
from datetime import timedelta
from unittest.mock import patch

import pytest

from plangate.billing.constants import BillingStatus
from plangate.billing.exceptions import ConcurrentUpdateError
from plangate.billing.exceptions import InvalidWebhookError
from plangate.billing.exceptions import ProcessorNotConfiguredError
from plangate.billing.models import PlanChange
from plangate.billing.models import ProcessedWebhookEvent
from plangate.billing.tests.utils import epoch
from plangate.billing.tests.utils import sign_payload
from plangate.billing.tests.utils import stripe_event
from plangate.billing.tests.utils import stripe_subscription
from plangate.billing.webhooks import handle_event
from plangate.billing.webhooks import verify_event
from plangate.users.models import Organization

SECRET = "whsec_dummy_test_secret"


class TestVerifyEvent:
    def test_valid_signature(self):
        payload = json.dumps({"id": "evt_1", "type": "invoice.paid"})

        event = verify_event(payload.encode(), sign_payload(payload, SECRET))

        assert event == {"id": "evt_1", "type": "invoice.paid"}

    def test_missing_signature(self):
        with pytest.raises(InvalidWebhookError, match="Missing"):
            verify_event(b"{}", None)

    def test_wrong_secret(self):
        payload = json.dumps({"id": "evt_1"})

        with pytest.raises(InvalidWebhookError, match="Invalid signature"):
            verify_event(payload.encode(), sign_payload(payload, "whsec_other"))

    def test_tampered_payload(self):
        payload = json.dumps({"id": "evt_1", "type": "a"})
        signature = sign_payload(payload, SECRET)

        with pytest.raises(InvalidWebhookError):
            verify_event(json.dumps({"id": "evt_2"}).encode(), signature)

    def test_unparseable_payload(self):
        payload = "not json"

        with pytest.raises(InvalidWebhookError):
            verify_event(payload.encode(), sign_payload(payload, SECRET))

    def test_secret_not_configured(self, settings):
        settings.STRIPE_WEBHOOK_SECRET = ""

        with pytest.raises(ProcessorNotConfiguredError):
            verify_event(b"{}", "t=1,v1=abc")


@pytest.mark.django_db
class TestSubscriptionEvents:
    def test_subscription_updated_is_applied(self, org, now):
        event = stripe_event(
            "customer.subscription.updated",
            stripe_subscription(org.pk, now),
            now,
        )

        result = handle_event(event, now=now)

        assert result.outcome == ProcessedWebhookEvent.Outcome.APPLIED
        assert result.org_id == org.pk
        org.refresh_from_db()
        assert org.plan_id == "pro"
        assert org.billing_status == BillingStatus.ACTIVE
        assert org.subscription_provider == "stripe"
        assert org.subscription_id == "sub_123"
        assert org.subscription_customer_id == "cus_123"
        assert org.subscription_price_id == "price_test_pro"
        assert org.subscription_current_period_end == now + timedelta(days=30)
        assert org.subscription_event_at == now

    def test_applied_change_is_audited(self, org, now):
        event = stripe_event(
            "customer.subscription.created",
            stripe_subscription(org.pk, now),
            now,
        )

        handle_event(event, now=now)

        change = PlanChange.objects.get(org=org)
        assert change.source == "processor"
        assert change.old_plan_id == "free"
        assert change.new_plan_id == "pro"
        assert change.change_type == "upgrade"
        assert change.actor is None

    def test_redelivery_is_harmless(self, org, now):
        event = stripe_event(
            "customer.subscription.updated",
            stripe_subscription(org.pk, now, cancel_at_period_end=True),
            now,
        )

        handle_event(event, now=now)
        org.refresh_from_db()
        first = (org.plan_id, org.billing_status, org.cancellation_effective_at)

        handle_event(event, now=now)
        org.refresh_from_db()

        assert (org.plan_id, org.billing_status, org.cancellation_effective_at) == first
        assert org.cancellation_effective_at == now + timedelta(days=30)
        record = ProcessedWebhookEvent.objects.get(event_id="evt_123")
        assert record.delivery_count == 2
        assert PlanChange.objects.filter(org=org).count() == 1

    def test_trialing_subscription(self, org, now):
        payload = stripe_subscription(
            org.pk,
            now,
            status="trialing",
            trial_start=epoch(now),
            trial_end=epoch(now + timedelta(days=14)),
        )

        handle_event(
            stripe_event("customer.subscription.created", payload, now),
            now=now,
        )

        org.refresh_from_db()
        assert org.billing_status == BillingStatus.TRIALING
        assert org.trial_plan_id == "pro"
        assert org.trial_ends_at == now + timedelta(days=14)
        assert org.trial_ended_at is None

    def test_deleted_subscription(self, org, now):
        Organization.objects.filter(pk=org.pk).update(
            plan_id="pro",
            subscription_provider="stripe",
            subscription_id="sub_123",
            subscription_customer_id="cus_123",
        )
        payload = stripe_subscription(org.pk, now, status="canceled")

        result = handle_event(
            stripe_event("customer.subscription.deleted", payload, now),
            now=now,
        )

        assert result.outcome == ProcessedWebhookEvent.Outcome.APPLIED
        org.refresh_from_db()
        assert org.plan_id == "free"
        assert org.billing_status == BillingStatus.CANCELED
        assert org.subscription_id is None
        assert org.subscription_provider is None
        assert org.subscription_customer_id == "cus_123"

    def test_deleting_replaced_subscription_keeps_current_one(self, org, now):
        Organization.objects.filter(pk=org.pk).update(
            plan_id="ultra",
            subscription_provider="stripe",
            subscription_id="sub_new",
            subscription_customer_id="cus_123",
        )
        payload = stripe_subscription(org.pk, now, id="sub_old", status="canceled")

        result = handle_event(
            stripe_event("customer.subscription.deleted", payload, now),
            now=now,
        )

        assert result.outcome == ProcessedWebhookEvent.Outcome.SUPERSEDED
        org.refresh_from_db()
        assert org.plan_id == "ultra"
        assert org.billing_status == BillingStatus.ACTIVE
        assert org.subscription_id == "sub_new"
        assert not PlanChange.objects.filter(org=org).exists()
        record = ProcessedWebhookEvent.objects.get(event_id="evt_123")
        assert record.outcome == "superseded"

    def test_trialing_subscription_keeps_used_trial(self, org, now):
        used_at = now - timedelta(days=30)
        Organization.objects.filter(pk=org.pk).update(trial_ended_at=used_at)
        payload = stripe_subscription(
            org.pk,
            now,
            status="trialing",
            trial_start=epoch(now),
            trial_end=epoch(now + timedelta(days=14)),
        )

        handle_event(
            stripe_event("customer.subscription.created", payload, now),
            now=now,
        )

        org.refresh_from_db()
        assert org.trial_ended_at == used_at


@pytest.mark.django_db
class TestUncorrelatedEvents:
    def test_missing_org_metadata(self, now):
        event = stripe_event(
            "customer.subscription.updated",
            stripe_subscription(None, now),
            now,
        )

        result = handle_event(event, now=now)

        assert result.outcome == ProcessedWebhookEvent.Outcome.UNCORRELATED
        assert result.org_id is None
        record = ProcessedWebhookEvent.objects.get(event_id="evt_123")
        assert record.outcome == "uncorrelated"

    @pytest.mark.parametrize("org_id", ["abc", "12abc", "-4", "²", "١٢"])
    def test_malformed_org_id(self, org_id, now):
        payload = stripe_subscription(None, now, metadata={"organizationId": org_id})

        result = handle_event(
            stripe_event("customer.subscription.updated", payload, now),
            now=now,
        )

        assert result.outcome == ProcessedWebhookEvent.Outcome.UNCORRELATED

    def test_unknown_org(self, db, now):
        event = stripe_event(
            "customer.subscription.updated",
            stripe_subscription(999999, now),
            now,
        )

        result = handle_event(event, now=now)

        assert result.outcome == ProcessedWebhookEvent.Outcome.UNCORRELATED


@pytest.mark.django_db
class TestOtherEvents:
    def test_unhandled_event_type_is_ignored(self, org, now):
        event = stripe_event("invoice.paid", {"id": "in_1"}, now)

        result = handle_event(event, now=now)

        assert result.outcome == ProcessedWebhookEvent.Outcome.IGNORED
        org.refresh_from_db()
        assert org.billing_version == 0
        assert ProcessedWebhookEvent.objects.get(event_id="evt_123").outcome == "ignored"

    def test_checkout_completed_fetches_subscription(self, org, now):
        subscription = stripe_subscription(
            None,
            now,
            items={"data": [{"price": {"id": "price_test_ultra"}}]},
        )
        session = {
            "id": "cs_123",
            "object": "checkout.session",
            "subscription": "sub_123",
            "client_reference_id": str(org.pk),
            "metadata": {"organizationId": str(org.pk), "planId": "ultra"},
        }

        with patch(
            "plangate.billing.services.BillingService.retrieve_subscription",
            return_value=subscription,
        ) as retrieve:
            result = handle_event(
                stripe_event("checkout.session.completed", session, now),
                now=now,
            )

        retrieve.assert_called_once_with("sub_123")
        assert result.outcome == ProcessedWebhookEvent.Outcome.APPLIED
        org.refresh_from_db()
        assert org.plan_id == "ultra"
        assert org.subscription_id == "sub_123"
        assert org.subscription_price_id == "price_test_ultra"

    def test_checkout_falls_back_to_client_reference(self, org, now):
        subscription = stripe_subscription(None, now)
        session = {"subscription": "sub_123", "client_reference_id": str(org.pk)}

        with patch(
            "plangate.billing.services.BillingService.retrieve_subscription",
            return_value=subscription,
        ):
            result = handle_event(
                stripe_event("checkout.session.completed", session, now),
                now=now,
            )

        assert result.org_id == org.pk
        org.refresh_from_db()
        # Plan comes from the subscription's price.
        assert org.plan_id == "pro"

    def test_checkout_without_subscription_is_ignored(self, org, now):
        session = {"id": "cs_123", "mode": "payment", "subscription": None}

        result = handle_event(
            stripe_event("checkout.session.completed", session, now),
            now=now,
        )

        assert result.outcome == ProcessedWebhookEvent.Outcome.IGNORED


@pytest.mark.django_db
class TestOutOfOrderEvents:
    @pytest.fixture
    def newer_state(self, org, now):
        Organization.objects.filter(pk=org.pk).update(
            plan_id="ultra",
            subscription_event_at=now,
        )
        return org

    def older_event(self, org, now):
        return stripe_event(
            "customer.subscription.updated",
            stripe_subscription(org.pk, now),
            now - timedelta(minutes=5),
            event_id="evt_old",
        )

    def test_stale_event_applied_by_default(self, newer_state, now):
        result = handle_event(self.older_event(newer_state, now), now=now)

        assert result.outcome == ProcessedWebhookEvent.Outcome.APPLIED
        newer_state.refresh_from_db()
        assert newer_state.plan_id == "pro"
        assert newer_state.subscription_event_at == now - timedelta(minutes=5)

    def test_stale_event_skipped_when_configured(self, newer_state, now, settings):
        settings.BILLING_IGNORE_STALE_WEBHOOKS = True

        result = handle_event(self.older_event(newer_state, now), now=now)

        assert result.outcome == ProcessedWebhookEvent.Outcome.STALE
        newer_state.refresh_from_db()
        assert newer_state.plan_id == "ultra"
        assert newer_state.subscription_event_at == now
        assert ProcessedWebhookEvent.objects.get(event_id="evt_old").outcome == "stale"


@pytest.mark.django_db
def test_storage_failure_is_recorded_and_raised(org, now):
    event = stripe_event(
        "customer.subscription.updated",
        stripe_subscription(org.pk, now),
        now,
    )

    with (
        patch(
            "plangate.billing.webhooks.apply_billing_patch",
            side_effect=ConcurrentUpdateError("lost every race"),
        ),
        pytest.raises(ConcurrentUpdateError),
    ):
        handle_event(event, now=now)

    assert ProcessedWebhookEvent.objects.get(event_id="evt_123").outcome == "failed"
