"""
Billing API endpoints.

``plans/`` lists the catalog. Everything under ``orgs/<org_slug>/`` is
scoped to one organization:
- GET  subscription/  effective billing state (any member)
- POST change-plan/   administrative plan change (billing managers)
- POST downgrade/     back to the free plan (billing managers)
- POST checkout/      Stripe Checkout URL (billing managers)
- POST portal/        Stripe Customer Portal URL (billing managers)
- GET  invoices/      recent Stripe invoices (billing managers)
- GET  access/        page access map for the caller

``StripeWebhookView`` receives signed Stripe events.
"""

from __future__ import annotations

import logging

import stripe
from django.db import DatabaseError
from django.utils import timezone
from drf_spectacular.utils import extend_schema
from drf_spectacular.utils import inline_serializer
from rest_framework import serializers
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from plangate.billing.constants import BILLING_PAGE_PATH
from plangate.billing.derivation import derive_for_org
from plangate.billing.exceptions import BillingError
from plangate.billing.exceptions import ConcurrentUpdateError
from plangate.billing.exceptions import InvalidWebhookError
from plangate.billing.exceptions import MissingProcessorCustomerError
from plangate.billing.exceptions import NotAuthorizedError
from plangate.billing.exceptions import OrganizationNotFoundError
from plangate.billing.exceptions import ProcessorNotConfiguredError
from plangate.billing.exceptions import UnknownPlanError
from plangate.billing.gating import page_access_for
from plangate.billing.plan_changes import PlanChangeService
from plangate.billing.plans import all_plans
from plangate.billing.serializers import InvoiceSerializer
from plangate.billing.serializers import PageAccessSerializer
from plangate.billing.serializers import PlanSerializer
from plangate.billing.serializers import PlanRequestSerializer
from plangate.billing.serializers import RedirectSerializer
from plangate.billing.services import BillingService
from plangate.billing.webhooks import handle_event
from plangate.billing.webhooks import verify_event
from plangate.core.api.org_scoped import BillingManagerPermission
from plangate.core.api.org_scoped import OrgMembershipPermission
from plangate.core.api.org_scoped import OrgScopedMixin

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotAuthorizedError: status.HTTP_403_FORBIDDEN,
    UnknownPlanError: status.HTTP_400_BAD_REQUEST,
    MissingProcessorCustomerError: status.HTTP_400_BAD_REQUEST,
    ProcessorNotConfiguredError: status.HTTP_400_BAD_REQUEST,
    OrganizationNotFoundError: status.HTTP_404_NOT_FOUND,
    ConcurrentUpdateError: status.HTTP_409_CONFLICT,
}

BillingStateSchema = inline_serializer(
    name="BillingState",
    fields={
        "plan_id": serializers.CharField(),
        "billing_status": serializers.CharField(),
        "trial_remaining_ms": serializers.IntegerField(),
        "features": serializers.DictField(child=serializers.BooleanField()),
        "plan": serializers.DictField(),
        "trial_started_at": serializers.DateTimeField(allow_null=True),
        "trial_ends_at": serializers.DateTimeField(allow_null=True),
        "trial_plan_id": serializers.CharField(allow_null=True),
        "trial_ended_at": serializers.DateTimeField(allow_null=True),
        "cancellation_effective_at": serializers.DateTimeField(allow_null=True),
        "subscription_provider": serializers.CharField(allow_null=True),
        "subscription_id": serializers.CharField(allow_null=True),
        "subscription_customer_id": serializers.CharField(allow_null=True),
        "subscription_price_id": serializers.CharField(allow_null=True),
        "subscription_current_period_end": serializers.DateTimeField(
            allow_null=True,
        ),
    },
)

PlanChangeSchema = inline_serializer(
    name="PlanChangeResult",
    fields={
        "changed": serializers.BooleanField(),
        "change_type": serializers.CharField(),
        "started_trial": serializers.BooleanField(),
        "billing": BillingStateSchema,
    },
)


def error_status(exc: Exception) -> int | None:
    """HTTP status for billing and Stripe errors; None for anything else."""
    for error_class, error_status_code in ERROR_STATUS.items():
        if isinstance(exc, error_class):
            return error_status_code
    if isinstance(exc, stripe.StripeError):
        return exc.http_status or status.HTTP_502_BAD_GATEWAY
    return None


class BillingAPIView(OrgScopedMixin, APIView):
    """
    Base view for org-scoped billing endpoints.

    Translates billing and Stripe errors into JSON error responses.
    """

    permission_classes = [IsAuthenticated, OrgMembershipPermission]

    def handle_exception(self, exc):
        status_code = error_status(exc)
        if status_code is None:
            return super().handle_exception(exc)
        if isinstance(exc, stripe.StripeError):
            logger.exception(
                "Stripe request failed for org %s",
                self.kwargs.get("org_slug"),
            )
            message = exc.user_message or str(exc)
        else:
            logger.info("Billing request rejected: %s", exc)
            message = str(exc)
        return Response({"error": message}, status=status_code)

    def billing_page_url(self) -> str:
        return self.request.build_absolute_uri(BILLING_PAGE_PATH)

    def plan_change_response(self, result) -> Response:
        return Response(
            {
                "changed": result.changed,
                "change_type": result.change_type.value,
                "started_trial": result.started_trial,
                "billing": result.billing.as_dict(),
            },
            status=status.HTTP_200_OK,
        )


class SubscriptionView(BillingAPIView):
    """The organization's effective billing state, derived at request time."""

    @extend_schema(
        summary="Get effective billing state",
        responses={200: BillingStateSchema},
        tags=["Billing"],
    )
    def get(self, request, *args, **kwargs):
        billing = derive_for_org(self.get_org(), timezone.now())
        return Response(billing.as_dict(), status=status.HTTP_200_OK)


class ChangePlanView(BillingAPIView):
    """
    Switch plans without going through Stripe.

    Starts the plan's trial when the organization never had one; see
    ``plangate.billing.plan_changes``.
    """

    permission_classes = [IsAuthenticated, BillingManagerPermission]

    @extend_schema(
        summary="Change plan",
        request=PlanRequestSerializer,
        responses={200: PlanChangeSchema},
        tags=["Billing"],
    )
    def post(self, request, *args, **kwargs):
        serializer = PlanRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = PlanChangeService().change_plan(
            self.get_org(),
            request.user,
            serializer.validated_data["plan_id"],
        )
        return self.plan_change_response(result)


class DowngradeView(BillingAPIView):
    permission_classes = [IsAuthenticated, BillingManagerPermission]

    @extend_schema(
        summary="Downgrade to the free plan",
        request=None,
        responses={200: PlanChangeSchema},
        tags=["Billing"],
    )
    def post(self, request, *args, **kwargs):
        result = PlanChangeService().downgrade_to_free(self.get_org(), request.user)
        return self.plan_change_response(result)


class CheckoutView(BillingAPIView):
    permission_classes = [IsAuthenticated, BillingManagerPermission]

    @extend_schema(
        summary="Start Stripe Checkout",
        request=PlanRequestSerializer,
        responses={200: RedirectSerializer},
        tags=["Billing"],
    )
    def post(self, request, *args, **kwargs):
        serializer = PlanRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        billing_url = self.billing_page_url()
        url = BillingService().create_checkout_session(
            org=self.get_org(),
            user=request.user,
            plan_id=serializer.validated_data["plan_id"],
            # Stripe fills in the placeholder; it must not be URL-encoded.
            success_url=f"{billing_url}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=billing_url,
        )
        return Response({"url": url}, status=status.HTTP_200_OK)


class PortalView(BillingAPIView):
    permission_classes = [IsAuthenticated, BillingManagerPermission]

    @extend_schema(
        summary="Open the Stripe Customer Portal",
        request=None,
        responses={200: RedirectSerializer},
        tags=["Billing"],
    )
    def post(self, request, *args, **kwargs):
        url = BillingService().create_portal_session(
            org=self.get_org(),
            user=request.user,
            return_url=self.billing_page_url(),
        )
        return Response({"url": url}, status=status.HTTP_200_OK)


class InvoiceListView(BillingAPIView):
    permission_classes = [IsAuthenticated, BillingManagerPermission]

    @extend_schema(
        summary="List recent invoices",
        responses={
            200: inline_serializer(
                name="InvoiceList",
                fields={"invoices": InvoiceSerializer(many=True)},
            ),
        },
        tags=["Billing"],
    )
    def get(self, request, *args, **kwargs):
        org = self.get_org()
        if not org.subscription_customer_id:
            # Nothing to ask Stripe for; works without Stripe configured.
            return Response({"invoices": []}, status=status.HTTP_200_OK)
        invoices = BillingService().list_invoices(org, request.user)
        return Response(
            {"invoices": InvoiceSerializer(invoices, many=True).data},
            status=status.HTTP_200_OK,
        )


class PageAccessView(BillingAPIView):
    """Which pages the caller may open, given plan and page grants."""

    @extend_schema(
        summary="Get page access for the current user",
        responses={200: PageAccessSerializer},
        tags=["Billing"],
    )
    def get(self, request, *args, **kwargs):
        pages = page_access_for(request.user, self.get_org(), timezone.now())
        return Response({"pages": pages}, status=status.HTTP_200_OK)


class StripeWebhookView(APIView):
    """
    Receive Stripe webhook events.

    Authentication is the Stripe signature, checked before anything else.
    Responses follow Stripe's retry semantics: 2xx for anything we handled
    or deliberately ignored, 4xx for requests that will never verify, 5xx
    when a retry could succeed.
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    @extend_schema(exclude=True)
    def post(self, request, *args, **kwargs):
        try:
            event = verify_event(
                request.body,
                request.headers.get("Stripe-Signature"),
            )
        except (InvalidWebhookError, ProcessorNotConfiguredError) as e:
            logger.error("Stripe webhook verification failed: %s", e)
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        try:
            result = handle_event(event)
        except stripe.StripeError:
            logger.exception("Stripe lookup failed for webhook %s", event.get("id"))
            return Response(
                {"error": "Webhook processing failed"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        except (BillingError, DatabaseError):
            # Logged by handle_event; Stripe will redeliver.
            return Response(
                {"error": "Webhook processing failed"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return Response(
            {"received": True, "outcome": str(result.outcome)},
            status=status.HTTP_200_OK,
        )


class PlanListView(APIView):
    """The plan catalog, in display order."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="List plans",
        responses={200: PlanSerializer(many=True)},
        tags=["Billing"],
    )
    def get(self, request, *args, **kwargs):
        return Response(
            PlanSerializer(all_plans(), many=True).data,
            status=status.HTTP_200_OK,
        )
