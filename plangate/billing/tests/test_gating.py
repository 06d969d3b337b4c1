"""
Tests for the page feature gate.

The plan decides what can be unlocked at all; page grants only ever narrow
it further, and only for plain members.
"""

from datetime import timedelta

import pytest

from plangate.billing.constants import BillingStatus
from plangate.billing.constants import PageFeature
from plangate.billing.derivation import derive
from plangate.billing.gating import can_access
from plangate.billing.gating import page_access_for
from plangate.billing.state import BillingState
from plangate.users.constants import RoleCode
from plangate.users.models import Organization
from plangate.users.tests.factories import MembershipFactory
from plangate.users.tests.factories import PagePermissionFactory


class TestCanAccess:
    @pytest.fixture
    def free(self, now):
        return derive(BillingState(), now)

    @pytest.fixture
    def ultra(self, now):
        return derive(
            BillingState(plan_id="ultra", billing_status=BillingStatus.ACTIVE),
            now,
        )

    @pytest.mark.parametrize("role", [RoleCode.OWNER, RoleCode.ADMIN])
    def test_managers_follow_the_plan(self, free, role):
        assert can_access(free, role, {}, PageFeature.DASHBOARD)
        assert not can_access(free, role, {}, PageFeature.ANALYTICS)

    def test_managers_ignore_grants(self, ultra):
        grants = {PageFeature.REPORTS: False}

        assert can_access(ultra, RoleCode.OWNER, grants, PageFeature.REPORTS)

    def test_member_defaults_to_allowed(self, ultra):
        assert can_access(ultra, RoleCode.MEMBER, {}, PageFeature.REPORTS)
        assert can_access(ultra, RoleCode.MEMBER, None, PageFeature.REPORTS)

    def test_member_grant_narrows(self, ultra):
        grants = {PageFeature.REPORTS: False, PageFeature.TEAM: True}

        assert not can_access(ultra, RoleCode.MEMBER, grants, PageFeature.REPORTS)
        assert can_access(ultra, RoleCode.MEMBER, grants, PageFeature.TEAM)

    def test_grant_never_widens_the_plan(self, free):
        grants = {PageFeature.ANALYTICS: True}

        assert not can_access(free, RoleCode.MEMBER, grants, PageFeature.ANALYTICS)

    def test_no_membership_gets_nothing(self, ultra):
        assert not can_access(ultra, None, {}, PageFeature.DASHBOARD)

    def test_super_operator_follows_the_plan_only(self, free):
        assert can_access(
            free,
            None,
            {},
            PageFeature.DASHBOARD,
            is_super_operator=True,
        )
        assert not can_access(
            free,
            None,
            {},
            PageFeature.REPORTS,
            is_super_operator=True,
        )

    def test_unknown_page(self, ultra):
        assert not can_access(ultra, RoleCode.OWNER, {}, "billing-secrets")


@pytest.mark.django_db
class TestPageAccessFor:
    def test_member_map(self, org, now):
        Organization.objects.filter(pk=org.pk).update(plan_id="pro")
        org.refresh_from_db()
        membership = MembershipFactory(org=org, role=RoleCode.MEMBER)
        PagePermissionFactory(
            org=org,
            user=membership.user,
            page=PageFeature.REPORTS,
            can_access=False,
        )

        pages = page_access_for(membership.user, org, now)

        assert pages == {
            "dashboard": True,
            "analytics": False,
            "reports": False,
            "projects": True,
            "team": True,
        }

    def test_grants_in_other_orgs_do_not_apply(self, org, now):
        Organization.objects.filter(pk=org.pk).update(plan_id="pro")
        org.refresh_from_db()
        membership = MembershipFactory(org=org, role=RoleCode.MEMBER)
        PagePermissionFactory(
            user=membership.user,
            page=PageFeature.REPORTS,
            can_access=False,
        )

        assert page_access_for(membership.user, org, now)["reports"] is True

    def test_expired_trial_locks_paid_pages(self, org, owner, now):
        Organization.objects.filter(pk=org.pk).update(
            plan_id="ultra",
            billing_status=BillingStatus.TRIALING,
            trial_ends_at=now - timedelta(days=1),
        )
        org.refresh_from_db()

        pages = page_access_for(owner, org, now)

        assert pages["analytics"] is False
        assert pages["dashboard"] is True

    def test_outsider_gets_nothing(self, org, user, now):
        assert not any(page_access_for(user, org, now).values())

    def test_super_operator(self, org, super_operator, now):
        pages = page_access_for(super_operator, org, now)

        assert pages["dashboard"] is True
        assert pages["reports"] is False
