"""
Billing service for Stripe operations.

This service provides a clean interface for:
- Creating Stripe checkout sessions (subscription signup)
- Opening the Stripe Customer Portal (self-service management)
- Listing recent invoices, live from Stripe

Nothing here writes billing state. Subscriptions created through checkout
reach the organization record only via webhook reconciliation, which reads
the ``organizationId``/``planId`` metadata attached here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING
from typing import Any

import stripe
from django.conf import settings
from django.utils import timezone

from plangate.billing.constants import DEFAULT_INVOICE_LIMIT
from plangate.billing.constants import METADATA_ORG_KEY
from plangate.billing.constants import METADATA_PLAN_KEY
from plangate.billing.exceptions import MissingProcessorCustomerError
from plangate.billing.exceptions import NotAuthorizedError
from plangate.billing.exceptions import ProcessorNotConfiguredError
from plangate.billing.exceptions import UnknownPlanError
from plangate.billing.plan_changes import trial_concluded_at
from plangate.billing.plan_changes import trial_in_progress
from plangate.billing.plans import is_valid_plan_id
from plangate.billing.plans import plan_by_id
from plangate.billing.plans import stripe_price_id
from plangate.billing.reconciler import from_epoch
from plangate.billing.reconciler import stripe_field
from plangate.billing.state import BillingState
from plangate.users.services import is_billing_manager

if TYPE_CHECKING:
    from datetime import datetime

    from plangate.users.models import Organization
    from plangate.users.models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Invoice:
    """One processor invoice, as shown on the billing page."""

    id: str
    number: str
    status: str
    total: int
    currency: str
    created: datetime | None
    hosted_invoice_url: str | None
    invoice_pdf: str | None
    billing_period_end: datetime | None

    @classmethod
    def from_stripe(cls, invoice: Any) -> Invoice:
        lines = stripe_field(stripe_field(invoice, "lines"), "data") or []
        period = stripe_field(lines[0], "period") if lines else None
        return cls(
            id=stripe_field(invoice, "id"),
            number=stripe_field(invoice, "number") or stripe_field(invoice, "id"),
            status=stripe_field(invoice, "status") or "open",
            total=stripe_field(invoice, "total") or 0,
            currency=stripe_field(invoice, "currency") or "usd",
            created=from_epoch(stripe_field(invoice, "created")),
            hosted_invoice_url=stripe_field(invoice, "hosted_invoice_url"),
            invoice_pdf=stripe_field(invoice, "invoice_pdf"),
            billing_period_end=from_epoch(stripe_field(period, "end")),
        )


class BillingService:
    """
    Service for Stripe billing operations.

    Uses Stripe Checkout for payments (not custom forms) and the Stripe
    Customer Portal for self-service management.

    Usage:
        service = BillingService()
        checkout_url = service.create_checkout_session(
            org=org,
            user=request.user,
            plan_id="pro",
            success_url="https://example.com/billing/?session_id={CHECKOUT_SESSION_ID}",
            cancel_url="https://example.com/billing/",
        )
    """

    def __init__(self):
        """Initialize with Stripe API key from settings."""
        if not settings.STRIPE_SECRET_KEY:
            raise ProcessorNotConfiguredError("Stripe is not configured")
        stripe.api_key = settings.STRIPE_SECRET_KEY

    def _require_billing_manager(self, org: Organization, user: User) -> None:
        if not is_billing_manager(user, org):
            raise NotAuthorizedError("Only workspace admins can manage billing")

    def _trial_available(self, org: Organization) -> bool:
        # One trial per organization, whether it ran here or on Stripe.
        state = BillingState.from_org(org)
        now = timezone.now()
        return trial_concluded_at(state, now) is None and not trial_in_progress(
            state,
            now,
        )

    def create_checkout_session(
        self,
        org: Organization,
        user: User,
        plan_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        """
        Create a Stripe Checkout session for subscription signup.

        Returns the checkout session URL to redirect the user to.

        Args:
            org: The organization subscribing
            user: The acting user; must be a billing manager
            plan_id: Catalog plan to subscribe to
            success_url: URL to redirect to after successful payment
            cancel_url: URL to redirect to if user cancels

        Raises:
            NotAuthorizedError: ``user`` can't manage billing for ``org``
            UnknownPlanError: ``plan_id`` is not a catalog plan
            ProcessorNotConfiguredError: the plan has no Stripe price id
        """
        self._require_billing_manager(org, user)
        if not is_valid_plan_id(plan_id):
            raise UnknownPlanError(plan_id)
        price_id = stripe_price_id(plan_id)
        if not price_id:
            msg = "Stripe price is not configured for this plan"
            raise ProcessorNotConfiguredError(msg)

        plan = plan_by_id(plan_id)
        # Both the session and the subscription carry these; the webhook
        # handler uses them to find the organization and plan.
        metadata = {
            METADATA_ORG_KEY: str(org.pk),
            METADATA_PLAN_KEY: plan_id,
        }
        subscription_data: dict[str, Any] = {"metadata": metadata}
        if plan.trial_days and self._trial_available(org):
            subscription_data["trial_period_days"] = plan.trial_days

        params: dict[str, Any] = {
            "mode": "subscription",
            "client_reference_id": str(org.pk),
            "metadata": metadata,
            "line_items": [{"price": price_id, "quantity": 1}],
            "subscription_data": subscription_data,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "allow_promotion_codes": True,
        }
        if org.subscription_customer_id:
            params["customer"] = org.subscription_customer_id
        elif getattr(user, "email", ""):
            params["customer_email"] = user.email
        if settings.STRIPE_AUTOMATIC_TAX_ENABLED:
            params["automatic_tax"] = {"enabled": True}

        session = stripe.checkout.Session.create(**params)

        logger.info(
            "Created checkout session %s for org %s, plan %s",
            session.id,
            org.pk,
            plan_id,
        )
        return session.url

    def create_portal_session(
        self,
        org: Organization,
        user: User,
        return_url: str,
    ) -> str:
        """
        Get a Stripe Customer Portal URL for self-service management.

        The portal allows customers to:
        - Update payment methods
        - View invoices and payment history
        - Cancel or modify their subscription

        Raises:
            MissingProcessorCustomerError: the organization has never been
                through checkout, so Stripe has no customer for it.
        """
        self._require_billing_manager(org, user)
        if not org.subscription_customer_id:
            raise MissingProcessorCustomerError("No Stripe customer configured")

        session = stripe.billing_portal.Session.create(
            customer=org.subscription_customer_id,
            return_url=return_url,
        )
        logger.info("Created portal session for org %s", org.pk)
        return session.url

    def list_invoices(
        self,
        org: Organization,
        user: User,
        *,
        limit: int | None = None,
    ) -> list[Invoice]:
        """
        Most recent invoices for ``org``, newest first.

        Not cached: every call goes to Stripe. An organization without a
        Stripe customer simply has no invoices.
        """
        self._require_billing_manager(org, user)
        if not org.subscription_customer_id:
            return []
        if limit is None:
            limit = getattr(settings, "BILLING_INVOICE_LIMIT", DEFAULT_INVOICE_LIMIT)

        invoices = stripe.Invoice.list(
            customer=org.subscription_customer_id,
            limit=limit,
        )
        return [Invoice.from_stripe(invoice) for invoice in invoices.data]

    def retrieve_subscription(self, subscription_id: str) -> Any:
        """Fetch a subscription with its price expanded, for reconciliation."""
        return stripe.Subscription.retrieve(
            subscription_id,
            expand=["items.data.price"],
        )
