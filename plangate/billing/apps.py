from django.apps import AppConfig


class BillingConfig(AppConfig):
    """
    Django app configuration for the billing app.

    Plan catalog, billing state derivation, plan changes, Stripe webhook
    reconciliation and the page feature gate.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "plangate.billing"
