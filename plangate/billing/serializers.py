from rest_framework import serializers

from plangate.billing.constants import PageFeature


class PlanRequestSerializer(serializers.Serializer):
    """
    Body of plan-change and checkout requests.

    The plan id is checked against the catalog by the billing engine, not
    here, so that authorization is always decided before plan validity.
    """

    plan_id = serializers.CharField(max_length=64)


class RedirectSerializer(serializers.Serializer):
    url = serializers.URLField()


class InvoiceSerializer(serializers.Serializer):
    id = serializers.CharField()
    number = serializers.CharField()
    status = serializers.CharField()
    total = serializers.IntegerField()
    currency = serializers.CharField()
    created = serializers.DateTimeField(allow_null=True)
    hosted_invoice_url = serializers.URLField(allow_null=True)
    invoice_pdf = serializers.URLField(allow_null=True)
    billing_period_end = serializers.DateTimeField(allow_null=True)


class PageAccessSerializer(serializers.Serializer):
    pages = serializers.DictField(
        child=serializers.BooleanField(),
        help_text=f"One entry per page: {', '.join(PageFeature.values)}.",
    )


class PlanSerializer(serializers.Serializer):
    """A catalog plan, read from ``plangate.billing.plans.Plan``."""

    id = serializers.CharField()
    name = serializers.CharField()
    description = serializers.CharField()
    price = serializers.CharField(source="price_display")
    price_cents = serializers.IntegerField()
    interval = serializers.CharField()
    trial_days = serializers.IntegerField()
    features = serializers.DictField(child=serializers.BooleanField())
    highlight = serializers.BooleanField()
