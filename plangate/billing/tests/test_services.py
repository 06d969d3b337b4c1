"""
Tests for BillingService.

Every Stripe call is mocked; these tests check what we send to Stripe and
how its answers are turned into our own types.
"""

from datetime import UTC
from datetime import datetime
from datetime import timedelta
from unittest.mock import MagicMock
from unittest.mock import patch

import pytest
from django.utils import timezone

from plangate.billing.constants import BillingStatus
from plangate.billing.exceptions import MissingProcessorCustomerError
from plangate.billing.exceptions import NotAuthorizedError
from plangate.billing.exceptions import ProcessorNotConfiguredError
from plangate.billing.exceptions import UnknownPlanError
from plangate.billing.services import BillingService
from plangate.billing.services import Invoice
from plangate.users.models import Organization

pytestmark = pytest.mark.django_db

SUCCESS_URL = "https://example.com/billing/?session_id={CHECKOUT_SESSION_ID}"
CANCEL_URL = "https://example.com/billing/"


@pytest.fixture
def mock_stripe():
    with patch("plangate.billing.services.stripe") as mocked:
        yield mocked


def with_customer(org, customer_id="cus_123"):
    Organization.objects.filter(pk=org.pk).update(subscription_customer_id=customer_id)
    org.refresh_from_db()
    return org


def test_requires_secret_key(settings):
    settings.STRIPE_SECRET_KEY = ""

    with pytest.raises(ProcessorNotConfiguredError):
        BillingService()


class TestCheckout:
    def test_creates_subscription_session(self, org, owner, mock_stripe):
        mock_stripe.checkout.Session.create.return_value = MagicMock(
            id="cs_test_1",
            url="https://checkout.stripe.com/c/pay/cs_test_1",
        )

        url = BillingService().create_checkout_session(
            org=org,
            user=owner,
            plan_id="pro",
            success_url=SUCCESS_URL,
            cancel_url=CANCEL_URL,
        )

        assert url == "https://checkout.stripe.com/c/pay/cs_test_1"
        params = mock_stripe.checkout.Session.create.call_args.kwargs
        assert params["mode"] == "subscription"
        assert params["line_items"] == [{"price": "price_test_pro", "quantity": 1}]
        assert params["client_reference_id"] == str(org.pk)
        assert params["metadata"] == {"organizationId": str(org.pk), "planId": "pro"}
        assert params["subscription_data"] == {
            "metadata": {"organizationId": str(org.pk), "planId": "pro"},
            "trial_period_days": 14,
        }
        assert params["success_url"] == SUCCESS_URL
        assert params["cancel_url"] == CANCEL_URL
        assert params["customer_email"] == owner.email
        assert "customer" not in params
        assert "automatic_tax" not in params

    def test_reuses_existing_customer(self, org, owner, mock_stripe, settings):
        settings.STRIPE_AUTOMATIC_TAX_ENABLED = True
        with_customer(org)

        BillingService().create_checkout_session(
            org=org,
            user=owner,
            plan_id="ultra",
            success_url=SUCCESS_URL,
            cancel_url=CANCEL_URL,
        )

        params = mock_stripe.checkout.Session.create.call_args.kwargs
        assert params["customer"] == "cus_123"
        assert "customer_email" not in params
        assert params["automatic_tax"] == {"enabled": True}
        assert params["line_items"][0]["price"] == "price_test_ultra"

    def test_used_trial_is_not_offered_again(self, org, owner, mock_stripe):
        Organization.objects.filter(pk=org.pk).update(
            trial_ended_at=timezone.now() - timedelta(days=30),
        )
        org.refresh_from_db()

        BillingService().create_checkout_session(
            org=org,
            user=owner,
            plan_id="pro",
            success_url=SUCCESS_URL,
            cancel_url=CANCEL_URL,
        )

        params = mock_stripe.checkout.Session.create.call_args.kwargs
        assert params["subscription_data"] == {
            "metadata": {"organizationId": str(org.pk), "planId": "pro"},
        }

    def test_running_trial_is_not_extended(self, org, owner, mock_stripe):
        Organization.objects.filter(pk=org.pk).update(
            plan_id="pro",
            billing_status=BillingStatus.TRIALING,
            trial_started_at=timezone.now(),
            trial_ends_at=timezone.now() + timedelta(days=7),
            trial_plan_id="pro",
        )
        org.refresh_from_db()

        BillingService().create_checkout_session(
            org=org,
            user=owner,
            plan_id="pro",
            success_url=SUCCESS_URL,
            cancel_url=CANCEL_URL,
        )

        params = mock_stripe.checkout.Session.create.call_args.kwargs
        assert "trial_period_days" not in params["subscription_data"]

    def test_member_cannot_check_out(self, org, member, mock_stripe):
        with pytest.raises(NotAuthorizedError):
            BillingService().create_checkout_session(
                org=org,
                user=member,
                plan_id="nonsense",
                success_url=SUCCESS_URL,
                cancel_url=CANCEL_URL,
            )

        mock_stripe.checkout.Session.create.assert_not_called()

    def test_unknown_plan(self, org, owner, mock_stripe):
        with pytest.raises(UnknownPlanError):
            BillingService().create_checkout_session(
                org=org,
                user=owner,
                plan_id="gold",
                success_url=SUCCESS_URL,
                cancel_url=CANCEL_URL,
            )

    def test_plan_without_price(self, org, owner, mock_stripe, settings):
        settings.STRIPE_PRICE_IDS = {"pro": "", "ultra": ""}

        with pytest.raises(ProcessorNotConfiguredError):
            BillingService().create_checkout_session(
                org=org,
                user=owner,
                plan_id="pro",
                success_url=SUCCESS_URL,
                cancel_url=CANCEL_URL,
            )

        mock_stripe.checkout.Session.create.assert_not_called()

    def test_free_plan_has_no_checkout(self, org, owner, mock_stripe):
        with pytest.raises(ProcessorNotConfiguredError):
            BillingService().create_checkout_session(
                org=org,
                user=owner,
                plan_id="free",
                success_url=SUCCESS_URL,
                cancel_url=CANCEL_URL,
            )


class TestPortal:
    def test_requires_customer(self, org, owner, mock_stripe):
        with pytest.raises(MissingProcessorCustomerError):
            BillingService().create_portal_session(org, owner, CANCEL_URL)

    def test_returns_portal_url(self, org, owner, mock_stripe):
        with_customer(org)
        mock_stripe.billing_portal.Session.create.return_value = MagicMock(
            url="https://billing.stripe.com/p/session/test",
        )

        url = BillingService().create_portal_session(org, owner, CANCEL_URL)

        assert url == "https://billing.stripe.com/p/session/test"
        mock_stripe.billing_portal.Session.create.assert_called_once_with(
            customer="cus_123",
            return_url=CANCEL_URL,
        )

    def test_member_is_rejected(self, org, member, mock_stripe):
        with_customer(org)

        with pytest.raises(NotAuthorizedError):
            BillingService().create_portal_session(org, member, CANCEL_URL)


class TestInvoices:
    def test_no_customer_no_invoices(self, org, owner, mock_stripe):
        assert BillingService().list_invoices(org, owner) == []
        mock_stripe.Invoice.list.assert_not_called()

    def test_lists_invoices(self, org, owner, mock_stripe, settings):
        settings.BILLING_INVOICE_LIMIT = 5
        with_customer(org)
        mock_stripe.Invoice.list.return_value = MagicMock(
            data=[
                {
                    "id": "in_1",
                    "number": "PG-0001",
                    "status": "paid",
                    "total": 4900,
                    "currency": "usd",
                    "created": 1735732800,
                    "hosted_invoice_url": "https://invoice.stripe.com/i/in_1",
                    "invoice_pdf": "https://pay.stripe.com/invoice/in_1/pdf",
                    "lines": {"data": [{"period": {"end": 1738411200}}]},
                },
                {"id": "in_2", "lines": {"data": []}},
            ],
        )

        invoices = BillingService().list_invoices(org, owner)

        mock_stripe.Invoice.list.assert_called_once_with(customer="cus_123", limit=5)
        assert invoices[0] == Invoice(
            id="in_1",
            number="PG-0001",
            status="paid",
            total=4900,
            currency="usd",
            created=datetime(2025, 1, 1, 12, 0, tzinfo=UTC),
            hosted_invoice_url="https://invoice.stripe.com/i/in_1",
            invoice_pdf="https://pay.stripe.com/invoice/in_1/pdf",
            billing_period_end=datetime(2025, 2, 1, 12, 0, tzinfo=UTC),
        )
        # Sparse invoices get sensible defaults.
        assert invoices[1].number == "in_2"
        assert invoices[1].status == "open"
        assert invoices[1].total == 0
        assert invoices[1].billing_period_end is None

    def test_explicit_limit(self, org, owner, mock_stripe):
        with_customer(org)
        mock_stripe.Invoice.list.return_value = MagicMock(data=[])

        BillingService().list_invoices(org, owner, limit=2)

        mock_stripe.Invoice.list.assert_called_once_with(customer="cus_123", limit=2)


def test_retrieve_subscription_expands_price(mock_stripe):
    BillingService().retrieve_subscription("sub_1")

    mock_stripe.Subscription.retrieve.assert_called_once_with(
        "sub_1",
        expand=["items.data.price"],
    )
