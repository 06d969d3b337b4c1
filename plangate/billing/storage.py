"""
Atomic, compare-and-set writes of billing patches.

Administrative plan changes and webhook reconciliation both follow
"read the organization, compute a patch, write the patch". Each write here is
a single UPDATE guarded by ``billing_version``: if another writer got in
between the read and the write, the UPDATE matches no row, and the whole
read/compute/write cycle is retried against the fresh record.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from plangate.billing.exceptions import ConcurrentUpdateError
from plangate.billing.exceptions import OrganizationNotFoundError
from plangate.billing.state import BillingPatch
from plangate.billing.state import BillingState

if TYPE_CHECKING:
    from collections.abc import Callable

    from plangate.users.models import Organization

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3


def apply_billing_patch(
    org_id,
    compute: Callable[[BillingState], BillingPatch],
    *,
    max_attempts: int = MAX_WRITE_ATTEMPTS,
) -> tuple[Organization, BillingPatch]:
    """
    Compute and persist a billing patch for one organization.

    ``compute`` receives the current ``BillingState`` and returns the patch to
    write; it may raise to abort without writing. An empty patch writes
    nothing.

    Returns the refreshed organization and the patch that was written.

    Raises:
        OrganizationNotFoundError: No organization with ``org_id``.
        ConcurrentUpdateError: Every attempt lost the race to another writer.
    """
    from plangate.users.models import Organization

    for attempt in range(1, max_attempts + 1):
        with transaction.atomic():
            try:
                org = Organization.objects.get(pk=org_id)
            except Organization.DoesNotExist as e:
                raise OrganizationNotFoundError(
                    f"Organization {org_id} not found",
                ) from e

            patch = compute(BillingState.from_org(org))
            if not patch:
                return org, patch

            updated = Organization.objects.filter(
                pk=org.pk,
                billing_version=org.billing_version,
            ).update(
                **patch,
                billing_version=F("billing_version") + 1,
                modified=timezone.now(),
            )

        if updated:
            org.refresh_from_db()
            return org, patch

        logger.info(
            "Billing write for org=%s lost a race (attempt %d/%d), retrying",
            org_id,
            attempt,
            max_attempts,
        )

    msg = f"Could not update billing for organization {org_id}"
    raise ConcurrentUpdateError(msg)
