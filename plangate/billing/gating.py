"""
Page-level feature gate.

Access to a page is the plan's entitlement for that page, narrowed by the
member's explicit page grants. Owners, admins and platform super-operators
skip the grants but never the plan: a free organization's owner still can't
open a paid-only page.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

from plangate.billing.constants import PageFeature
from plangate.billing.derivation import derive_for_org
from plangate.users.constants import BILLING_MANAGER_ROLES

if TYPE_CHECKING:
    from datetime import datetime

    from plangate.billing.derivation import DerivedBilling
    from plangate.users.models import Organization
    from plangate.users.models import User


def can_access(
    derived: DerivedBilling,
    membership_role: str | None,
    explicit_grants: Mapping[str, bool] | None,
    page: str,
    *,
    is_super_operator: bool = False,
) -> bool:
    """
    Decide whether a caller may open ``page``.

    ``explicit_grants`` maps page → granted for the caller's member role;
    a page with no entry defaults to allowed. A caller without a membership
    role (and who isn't a super-operator) gets nothing.
    """
    plan_allows = derived.plan.allows(page)
    if is_super_operator or membership_role in BILLING_MANAGER_ROLES:
        return plan_allows
    if not membership_role:
        return False
    granted = (explicit_grants or {}).get(page)
    return plan_allows and (granted is None or bool(granted))


def page_access_for(
    user: User,
    org: Organization,
    now: datetime,
) -> dict[str, bool]:
    """Full page → allowed map for ``user`` in ``org`` at ``now``."""
    from plangate.users.models import PagePermission
    from plangate.users.services import get_membership

    derived = derive_for_org(org, now)
    membership = get_membership(user, org)
    role = membership.role if membership else None
    is_super_operator = bool(getattr(user, "is_super_operator", False))

    grants: dict[str, bool] = {}
    if membership is not None:
        grants = dict(
            PagePermission.objects.filter(org=org, user=user).values_list(
                "page",
                "can_access",
            ),
        )

    return {
        page: can_access(
            derived,
            role,
            grants,
            page,
            is_super_operator=is_super_operator,
        )
        for page in PageFeature.values
    }
