"""
Membership services consumed by the billing engine.

The billing engine only needs two things from identity and membership:
whether a user may manage billing for an organization, and a hook for when
an organization loses its last owner. Both live here.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import transaction

from plangate.users.constants import RoleCode
from plangate.users.models import Membership
from plangate.users.models import Organization

if TYPE_CHECKING:
    from plangate.users.models import User

logger = logging.getLogger(__name__)


def get_membership(user: User, org: Organization) -> Membership | None:
    """Return the user's active membership in ``org``, or ``None``."""
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    return Membership.objects.filter(user=user, org=org, is_active=True).first()


def is_billing_manager(user: User, org: Organization) -> bool:
    """
    True when ``user`` may manage billing for ``org``.

    Owners, admins and platform super-operators qualify.
    """
    if user is None or not getattr(user, "is_authenticated", False):
        return False
    if user.is_super_operator:
        return True
    membership = get_membership(user, org)
    return bool(membership and membership.is_billing_manager)


@transaction.atomic
def create_organization(name: str, owner: User, *, slug: str = "") -> Organization:
    """
    Create an organization with ``owner`` as its first member.

    New organizations start on the default (free) plan, active, with no
    trial history; those are the model field defaults.
    """
    org = Organization.objects.create(name=name, slug=slug)
    Membership.objects.create(user=owner, org=org, role=RoleCode.OWNER)
    logger.info("Created organization %s for owner %s", org.pk, owner.pk)
    return org


@transaction.atomic
def remove_member(org: Organization, user: User) -> bool:
    """
    Deactivate ``user``'s membership in ``org``.

    When the removed member was the last active owner, the organization is
    moved to the free plan: nobody is left who could pay for or manage a
    paid subscription.

    Returns True if a membership was removed.
    """
    from plangate.billing.plan_changes import ChangeSource
    from plangate.billing.plan_changes import PlanChangeService

    membership = get_membership(user, org)
    if membership is None:
        return False

    was_owner = membership.role == RoleCode.OWNER
    membership.is_active = False
    membership.save(update_fields=["is_active", "modified"])
    logger.info("Removed user %s from organization %s", user.pk, org.pk)

    if not was_owner:
        return True

    owners_left = Membership.objects.filter(
        org=org,
        role=RoleCode.OWNER,
        is_active=True,
    ).exists()
    if not owners_left:
        logger.info("Organization %s has no owners left; downgrading", org.pk)
        PlanChangeService().downgrade_to_free(org, source=ChangeSource.MEMBERSHIP)
    return True
