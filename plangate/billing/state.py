"""
Snapshot of an organization's stored billing fields.

The engine's pure functions (derivation, plan changes, reconciliation) work on
``BillingState`` rather than on model instances, and return patches: plain
dicts of field name to new value, where ``None`` clears a field. Persisting a
patch is ``plangate.billing.storage``'s job.
"""

from __future__ import annotations

from dataclasses import asdict
from dataclasses import dataclass
from dataclasses import fields
from dataclasses import replace
from typing import TYPE_CHECKING
from typing import Any

if TYPE_CHECKING:
    from datetime import datetime

    from plangate.users.models import Organization

BillingPatch = dict[str, Any]


@dataclass(frozen=True)
class BillingState:
    plan_id: str | None = None
    billing_status: str | None = None
    trial_started_at: datetime | None = None
    trial_ends_at: datetime | None = None
    trial_plan_id: str | None = None
    trial_ended_at: datetime | None = None
    cancellation_effective_at: datetime | None = None
    subscription_provider: str | None = None
    subscription_id: str | None = None
    subscription_customer_id: str | None = None
    subscription_price_id: str | None = None
    subscription_current_period_end: datetime | None = None
    subscription_event_at: datetime | None = None

    @classmethod
    def from_org(cls, org: Organization | None) -> BillingState:
        """Read the billing fields off an organization; blanks count as absent."""
        if org is None:
            return cls()
        values = {}
        for name in BILLING_FIELDS:
            value = getattr(org, name, None)
            values[name] = value if value not in ("", None) else None
        return cls(**values)

    def apply(self, patch: BillingPatch) -> BillingState:
        """Return the state that results from writing ``patch``."""
        unknown = set(patch) - set(BILLING_FIELDS)
        if unknown:
            msg = f"Unknown billing fields in patch: {sorted(unknown)}"
            raise ValueError(msg)
        return replace(self, **patch)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


BILLING_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(BillingState))

# Fields that link the organization to a processor subscription.
PROCESSOR_LINK_FIELDS: tuple[str, ...] = (
    "subscription_provider",
    "subscription_id",
    "subscription_price_id",
    "subscription_current_period_end",
)
