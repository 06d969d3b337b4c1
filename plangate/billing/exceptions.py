"""
Billing error taxonomy.

API views translate these into HTTP responses; see
``plangate.billing.views.BillingAPIView.handle_exception``.
"""


class BillingError(Exception):
    """Base exception for billing errors."""


class NotAuthorizedError(BillingError):
    """Raised when the caller is not a billing manager for the organization."""


class UnknownPlanError(BillingError):
    """Raised when a requested plan id is not in the catalog."""

    def __init__(self, plan_id):
        self.plan_id = plan_id
        super().__init__(f"Unsupported plan: {plan_id!r}")


class MissingProcessorCustomerError(BillingError):
    """Raised when a processor customer id is required but not on file."""


class ProcessorNotConfiguredError(BillingError):
    """Raised when the payment processor keys or prices are not configured."""


class OrganizationNotFoundError(BillingError):
    """Raised when a tenant reference does not resolve to an organization."""


class ConcurrentUpdateError(BillingError):
    """Raised when a compare-and-set billing write keeps losing the race."""


class InvalidWebhookError(BillingError):
    """Raised when an inbound webhook fails signature or payload checks."""
