from datetime import UTC
from datetime import datetime

import pytest

from plangate.users.constants import RoleCode
from plangate.users.models import Organization
from plangate.users.models import User
from plangate.users.tests.factories import MembershipFactory
from plangate.users.tests.factories import OrganizationFactory
from plangate.users.tests.factories import UserFactory


@pytest.fixture(autouse=True)
def _media_storage(settings, tmpdir) -> None:
    settings.MEDIA_ROOT = tmpdir.strpath


@pytest.fixture(autouse=True)
def _stripe_prices(settings) -> None:
    """Pin the catalog's Stripe prices regardless of the environment."""
    settings.STRIPE_PRICE_IDS = {
        "pro": "price_test_pro",
        "ultra": "price_test_ultra",
    }
    settings.STRIPE_SECRET_KEY = "sk_test_dummy_test_key_for_testing"
    settings.STRIPE_WEBHOOK_SECRET = "whsec_dummy_test_secret"
    settings.BILLING_IGNORE_STALE_WEBHOOKS = False


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def user(db) -> User:
    return UserFactory()


@pytest.fixture
def org(db) -> Organization:
    return OrganizationFactory()


@pytest.fixture
def owner(org) -> User:
    return MembershipFactory(org=org, role=RoleCode.OWNER).user


@pytest.fixture
def admin_member(org) -> User:
    return MembershipFactory(org=org, role=RoleCode.ADMIN).user


@pytest.fixture
def member(org) -> User:
    return MembershipFactory(org=org, role=RoleCode.MEMBER).user


@pytest.fixture
def super_operator(db) -> User:
    return UserFactory(is_superuser=True, is_staff=True)
