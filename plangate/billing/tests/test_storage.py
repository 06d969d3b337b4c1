"""Tests for compare-and-set billing writes."""

import pytest
from django.db.models import F

from plangate.billing.constants import BillingStatus
from plangate.billing.exceptions import ConcurrentUpdateError
from plangate.billing.exceptions import OrganizationNotFoundError
from plangate.billing.storage import MAX_WRITE_ATTEMPTS
from plangate.billing.storage import apply_billing_patch
from plangate.users.models import Organization

pytestmark = pytest.mark.django_db


def interfere(org_id):
    """Simulate another writer landing between our read and our write."""
    Organization.objects.filter(pk=org_id).update(
        billing_version=F("billing_version") + 1,
    )


def test_writes_patch_and_bumps_version(org):
    updated, patch = apply_billing_patch(
        org.pk,
        lambda state: {"plan_id": "pro", "billing_status": BillingStatus.ACTIVE},
    )

    assert patch == {"plan_id": "pro", "billing_status": BillingStatus.ACTIVE}
    assert updated.plan_id == "pro"
    assert updated.billing_version == 1


def test_empty_patch_writes_nothing(org):
    updated, patch = apply_billing_patch(org.pk, lambda state: {})

    assert patch == {}
    assert updated.billing_version == 0


def test_compute_sees_current_state(org):
    Organization.objects.filter(pk=org.pk).update(plan_id="ultra")
    seen = []

    apply_billing_patch(org.pk, lambda state: seen.append(state.plan_id) or {})

    assert seen == ["ultra"]


def test_lost_race_is_retried_against_fresh_state(org):
    calls = []

    def compute(state):
        calls.append(state)
        if len(calls) == 1:
            interfere(org.pk)
        return {"plan_id": "ultra"}

    updated, _patch = apply_billing_patch(org.pk, compute)

    assert len(calls) == 2
    assert updated.plan_id == "ultra"
    # One bump from the interfering writer, one from ours.
    assert updated.billing_version == 2


def test_gives_up_after_max_attempts(org):
    calls = []

    def compute(state):
        calls.append(state)
        interfere(org.pk)
        return {"plan_id": "ultra"}

    with pytest.raises(ConcurrentUpdateError):
        apply_billing_patch(org.pk, compute)

    assert len(calls) == MAX_WRITE_ATTEMPTS
    assert Organization.objects.get(pk=org.pk).plan_id == "free"


def test_compute_errors_abort_the_write(org):
    def compute(state):
        msg = "boom"
        raise ValueError(msg)

    with pytest.raises(ValueError, match="boom"):
        apply_billing_patch(org.pk, compute)

    assert Organization.objects.get(pk=org.pk).billing_version == 0


def test_unknown_organization(db):
    with pytest.raises(OrganizationNotFoundError):
        apply_billing_patch(999999, lambda state: {"plan_id": "pro"})
