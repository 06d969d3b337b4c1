"""
Static plan catalog.

The catalog is process-wide, immutable configuration: plan definitions are
frozen dataclasses held in a read-only mapping built once at import time.
Only the processor price ids come from settings, and they are looked up on
each call so environments (and tests) can override them.

Lookups never raise for malformed input: an unknown id yields ``None`` (or
an empty/zero value), and callers validate with ``is_valid_plan_id`` before
trusting external input.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from datetime import timedelta
from types import MappingProxyType

from django.conf import settings

from plangate.billing.constants import PageFeature
from plangate.billing.constants import PlanId
from plangate.billing.constants import PriceInterval

MS_PER_DAY = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class Plan:
    """A named bundle of price and feature entitlements."""

    id: str
    name: str
    description: str
    price_cents: int
    interval: str = PriceInterval.MONTH
    trial_days: int = 0
    features: MappingProxyType = field(
        default_factory=lambda: MappingProxyType({}),
        hash=False,
    )
    highlight: bool = False

    @property
    def price_display(self) -> str:
        """Whole-dollar price for display, e.g. "$49"."""
        return f"${self.price_cents // 100}"

    @property
    def offers_trial(self) -> bool:
        return self.trial_days > 0

    @property
    def is_paid(self) -> bool:
        return self.price_cents > 0

    def allows(self, feature: str) -> bool:
        return bool(self.features.get(feature, False))


def _features(**flags: bool) -> MappingProxyType:
    # Every page feature is present in every plan; unspecified ones are off.
    return MappingProxyType(
        {feature: bool(flags.get(feature, False)) for feature in PageFeature.values},
    )


_CATALOG: MappingProxyType[str, Plan] = MappingProxyType(
    {
        PlanId.FREE: Plan(
            id=PlanId.FREE,
            name="Starter",
            description="Core features for getting started with a workspace",
            price_cents=0,
            features=_features(dashboard=True, projects=True, team=True),
        ),
        PlanId.PRO: Plan(
            id=PlanId.PRO,
            name="Pro",
            description="Advanced features for growing teams",
            price_cents=4900,
            trial_days=14,
            features=_features(
                dashboard=True,
                reports=True,
                projects=True,
                team=True,
            ),
            highlight=True,
        ),
        PlanId.ULTRA: Plan(
            id=PlanId.ULTRA,
            name="Ultra",
            description="Everything unlocked for enterprise teams",
            price_cents=9900,
            trial_days=14,
            features=_features(
                dashboard=True,
                analytics=True,
                reports=True,
                projects=True,
                team=True,
            ),
        ),
    },
)

_PLAN_ORDER: tuple[str, ...] = (PlanId.FREE, PlanId.PRO, PlanId.ULTRA)


def default_plan() -> str:
    """The free plan every organization falls back to."""
    return PlanId.FREE


def is_valid_plan_id(value: object) -> bool:
    return isinstance(value, str) and value in _CATALOG


def plan_by_id(plan_id: str | None) -> Plan | None:
    if not is_valid_plan_id(plan_id):
        return None
    return _CATALOG[plan_id]


def plan_order() -> tuple[str, ...]:
    return _PLAN_ORDER


def all_plans() -> list[Plan]:
    """Plans in display order."""
    return [_CATALOG[plan_id] for plan_id in _PLAN_ORDER]


def feature_map(plan_id: str | None) -> dict[str, bool]:
    """
    Page-feature entitlements for a plan.

    Returns a fresh dict so callers may mutate it. An unknown plan unlocks
    nothing.
    """
    plan = plan_by_id(plan_id)
    if plan is None:
        return dict.fromkeys(PageFeature.values, False)
    return dict(plan.features)


def trial_length(plan_id: str | None) -> timedelta:
    """Trial duration offered by a plan; zero if it offers none."""
    plan = plan_by_id(plan_id)
    if plan is None or not plan.offers_trial:
        return timedelta(0)
    return timedelta(days=plan.trial_days)


def trial_length_ms(plan_id: str | None) -> int:
    plan = plan_by_id(plan_id)
    if plan is None:
        return 0
    return plan.trial_days * MS_PER_DAY


def stripe_price_id(plan_id: str | None) -> str | None:
    """Processor price id configured for a plan, if any."""
    if not is_valid_plan_id(plan_id):
        return None
    price_ids = getattr(settings, "STRIPE_PRICE_IDS", {}) or {}
    return price_ids.get(plan_id) or None


def plan_for_stripe_price(price_id: str | None) -> str | None:
    """Reverse lookup of ``stripe_price_id``."""
    if not price_id:
        return None
    for plan_id in _PLAN_ORDER:
        if stripe_price_id(plan_id) == price_id:
            return plan_id
    return None
