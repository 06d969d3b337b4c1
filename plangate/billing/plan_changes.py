"""
Plan change service for administrative plan switches.

This module decides how an organization's stored billing fields change when
an owner/admin (or a platform operator) picks a plan:

- Default (free) plan: status becomes active, the running trial window is
  cleared and processor subscription linkage is dropped.
- Paid plan, trial never used, plan offers a trial: a trial starts now.
- Paid plan otherwise: status becomes active; trial history is left alone.

Key design decisions:
- The decision functions (``change_plan``, ``downgrade_to_free``) are pure.
  They take a ``BillingState`` and return a patch; persisting the patch is
  the caller's job (``PlanChangeService`` does it through the
  compare-and-set write in ``plangate.billing.storage``).
- A tenant gets one trial, ever. ``trial_ended_at`` is stamped the first
  time a trial concludes and is never cleared by this module. A trial whose
  end date has passed counts as used even before anything stamped it.
- Asking again for the plan of a trial that is still running is a no-op, so
  the trial window can't be extended by re-requesting it. Switching to
  another trial-offering plan mid-trial keeps the original window.
- Every applied change is audited via the ``PlanChange`` model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from django.utils import timezone

from plangate.billing.constants import BillingStatus
from plangate.billing.derivation import derive
from plangate.billing.exceptions import NotAuthorizedError
from plangate.billing.exceptions import UnknownPlanError
from plangate.billing.plans import default_plan
from plangate.billing.plans import is_valid_plan_id
from plangate.billing.plans import plan_by_id
from plangate.billing.plans import trial_length
from plangate.billing.state import PROCESSOR_LINK_FIELDS
from plangate.billing.state import BillingPatch
from plangate.billing.state import BillingState

if TYPE_CHECKING:
    from datetime import datetime

    from plangate.billing.derivation import DerivedBilling
    from plangate.users.models import Organization
    from plangate.users.models import User

logger = logging.getLogger(__name__)


class PlanChangeType(str, Enum):
    """Types of plan changes."""

    UPGRADE = "upgrade"  # Moving to a higher-priced plan
    DOWNGRADE = "downgrade"  # Moving to a lower-priced plan
    LATERAL = "lateral"  # Same price, including same plan


class ChangeSource(str, Enum):
    """Who caused a plan change."""

    ADMIN = "admin"
    PROCESSOR = "processor"
    MEMBERSHIP = "membership"


@dataclass
class PlanChangeResult:
    """Result of a plan change operation."""

    change_type: PlanChangeType
    old_plan_id: str
    new_plan_id: str
    patch: BillingPatch
    billing: DerivedBilling | None = None
    started_trial: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.patch)


def get_change_type(old_plan_id: str, new_plan_id: str) -> PlanChangeType:
    """
    Determine if this is an upgrade, downgrade, or lateral move.

    Based on price - higher price = upgrade.
    """
    old_plan = plan_by_id(old_plan_id) or plan_by_id(default_plan())
    new_plan = plan_by_id(new_plan_id) or plan_by_id(default_plan())
    if new_plan.price_cents > old_plan.price_cents:
        return PlanChangeType.UPGRADE
    if new_plan.price_cents < old_plan.price_cents:
        return PlanChangeType.DOWNGRADE
    return PlanChangeType.LATERAL


def trial_concluded_at(state: BillingState, now: datetime) -> datetime | None:
    """
    When the tenant's trial concluded, or ``None`` if it hasn't.

    ``trial_ended_at`` wins when set. Otherwise a trial end date that has
    already passed means the trial expired without anyone recording it.
    """
    if state.trial_ended_at is not None:
        return state.trial_ended_at
    if state.trial_ends_at is not None and state.trial_ends_at <= now:
        return state.trial_ends_at
    return None


def trial_in_progress(state: BillingState, now: datetime) -> bool:
    return (
        state.billing_status == BillingStatus.TRIALING
        and state.trial_ends_at is not None
        and state.trial_ends_at > now
        and state.trial_ended_at is None
    )


def _clear_processor_link() -> BillingPatch:
    patch: BillingPatch = dict.fromkeys(PROCESSOR_LINK_FIELDS)
    patch["cancellation_effective_at"] = None
    return patch


def change_plan(
    state: BillingState,
    requested_plan_id: str,
    now: datetime,
    *,
    is_billing_manager: bool,
) -> BillingPatch:
    """
    Compute the patch for switching an organization to ``requested_plan_id``.

    Raises:
        NotAuthorizedError: The caller can't manage billing for this tenant.
        UnknownPlanError: ``requested_plan_id`` isn't in the catalog.
    """
    if not is_billing_manager:
        raise NotAuthorizedError("Only workspace admins can manage billing")
    if not is_valid_plan_id(requested_plan_id):
        raise UnknownPlanError(requested_plan_id)

    concluded_at = trial_concluded_at(state, now)
    running = trial_in_progress(state, now)
    patch: BillingPatch = {"plan_id": requested_plan_id}

    if requested_plan_id == default_plan():
        patch["billing_status"] = BillingStatus.ACTIVE
        patch["trial_ends_at"] = None
        # Leaving a running trial for the free plan concludes it.
        if running:
            patch["trial_ended_at"] = now
        elif concluded_at is not None and state.trial_ended_at is None:
            patch["trial_ended_at"] = concluded_at
        patch.update(_clear_processor_link())
        return _drop_noops(state, patch)

    offers_trial = trial_length(requested_plan_id).total_seconds() > 0

    if running and offers_trial:
        # Same trial window, possibly a different plan being trialed.
        patch["trial_plan_id"] = requested_plan_id
        return _drop_noops(state, patch)

    if concluded_at is None and not running and offers_trial:
        patch.update(
            {
                "billing_status": BillingStatus.TRIALING,
                "trial_started_at": now,
                "trial_ends_at": now + trial_length(requested_plan_id),
                "trial_plan_id": requested_plan_id,
                "trial_ended_at": None,
            },
        )
        return _drop_noops(state, patch)

    patch["billing_status"] = BillingStatus.ACTIVE
    if running:
        patch["trial_ended_at"] = now
    elif concluded_at is not None and state.trial_ended_at is None:
        patch["trial_ended_at"] = concluded_at
    return _drop_noops(state, patch)


def downgrade_to_free(state: BillingState) -> BillingPatch:
    """
    Unconditionally move the organization to the default plan.

    Used as a direct administrative action and when the last owner of an
    organization is removed. Trial history is left alone.
    """
    patch: BillingPatch = {
        "plan_id": default_plan(),
        "billing_status": BillingStatus.ACTIVE,
    }
    patch.update(_clear_processor_link())
    return _drop_noops(state, patch)


def _drop_noops(state: BillingState, patch: BillingPatch) -> BillingPatch:
    """Remove entries that would write the value already stored."""
    return {
        name: value
        for name, value in patch.items()
        if getattr(state, name) != value
    }


class PlanChangeService:
    """
    Applies plan changes to stored organizations.

    This service handles the persistence around the pure decision functions:
    - Authorization via the membership collaborator
    - Compare-and-set write of the patch
    - Auditing via ``PlanChange``
    - Logging

    Usage:
        service = PlanChangeService()
        result = service.change_plan(org, user, "pro")
        result.billing.effective_status  # "trialing"
    """

    def change_plan(
        self,
        org: Organization,
        user: User,
        requested_plan_id: str,
        *,
        now: datetime | None = None,
    ) -> PlanChangeResult:
        from plangate.billing.storage import apply_billing_patch
        from plangate.users.services import is_billing_manager

        now = now or timezone.now()
        manager = is_billing_manager(user, org)
        captured: dict[str, BillingState] = {}

        def compute(state: BillingState) -> BillingPatch:
            captured["state"] = state
            return change_plan(
                state,
                requested_plan_id,
                now,
                is_billing_manager=manager,
            )

        org, patch = apply_billing_patch(org.pk, compute)
        result = self._result(captured["state"], patch, requested_plan_id, org, now)
        self._audit(org, result, captured["state"], ChangeSource.ADMIN, user)

        logger.info(
            "Plan change for org=%s: %s -> %s (status=%s, changed=%s)",
            org.pk,
            result.old_plan_id,
            result.new_plan_id,
            result.billing.effective_status,
            result.changed,
        )
        return result

    def downgrade_to_free(
        self,
        org: Organization,
        user: User | None = None,
        *,
        source: ChangeSource = ChangeSource.ADMIN,
        now: datetime | None = None,
    ) -> PlanChangeResult:
        """
        Move the organization to the free plan.

        ``user`` is required (and must be a billing manager) for
        administrative downgrades; system-initiated downgrades such as
        last-owner removal pass ``source=ChangeSource.MEMBERSHIP``.
        """
        from plangate.billing.storage import apply_billing_patch
        from plangate.users.services import is_billing_manager

        now = now or timezone.now()
        if source == ChangeSource.ADMIN and not (
            user is not None and is_billing_manager(user, org)
        ):
            raise NotAuthorizedError("Only workspace admins can manage billing")

        captured: dict[str, BillingState] = {}

        def compute(state: BillingState) -> BillingPatch:
            captured["state"] = state
            return downgrade_to_free(state)

        org, patch = apply_billing_patch(org.pk, compute)
        result = self._result(captured["state"], patch, default_plan(), org, now)
        self._audit(org, result, captured["state"], source, user)

        logger.info(
            "Downgraded org=%s to %s (source=%s, changed=%s)",
            org.pk,
            result.new_plan_id,
            source.value,
            result.changed,
        )
        return result

    def _result(
        self,
        before: BillingState,
        patch: BillingPatch,
        requested_plan_id: str,
        org: Organization,
        now: datetime,
    ) -> PlanChangeResult:
        after = before.apply(patch)
        old_plan_id = derive(before, now).effective_plan_id
        return PlanChangeResult(
            change_type=get_change_type(old_plan_id, requested_plan_id),
            old_plan_id=old_plan_id,
            new_plan_id=requested_plan_id,
            patch=patch,
            billing=derive(after, now),
            started_trial=(
                patch.get("billing_status") == BillingStatus.TRIALING
            ),
        )

    def _audit(
        self,
        org: Organization,
        result: PlanChangeResult,
        before: BillingState,
        source: ChangeSource,
        user: User | None,
    ) -> None:
        from plangate.billing.models import PlanChange

        if not result.changed:
            return
        PlanChange.objects.create(
            org=org,
            actor=user,
            old_plan_id=result.old_plan_id,
            new_plan_id=result.billing.effective_plan_id,
            old_status=before.billing_status or BillingStatus.ACTIVE,
            new_status=result.billing.effective_status,
            change_type=result.change_type.value,
            source=source.value,
        )
