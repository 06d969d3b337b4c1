from collections.abc import Sequence
from typing import Any

import factory
from factory import Faker
from factory import post_generation
from factory.django import DjangoModelFactory

from plangate.billing.constants import PageFeature
from plangate.users.constants import RoleCode
from plangate.users.models import Membership
from plangate.users.models import Organization
from plangate.users.models import PagePermission
from plangate.users.models import User


class OrganizationFactory(DjangoModelFactory):
    class Meta:
        model = Organization

    name = factory.Sequence(lambda n: f"Test Organization {n}")
    slug = factory.Sequence(lambda n: f"test-org-{n}")


class UserFactory(DjangoModelFactory[User]):
    class Meta:
        model = User
        django_get_or_create = ["username"]

    username = factory.Sequence(lambda n: f"user-{n}")
    email = Faker("email")
    name = Faker("name")
    is_active = True

    @post_generation
    def password(self, create: bool, extracted: Sequence[Any], **kwargs):  # noqa: FBT001
        password = (
            extracted
            if extracted
            else Faker(
                "password",
                length=42,
                special_chars=True,
                digits=True,
                upper_case=True,
                lower_case=True,
            ).evaluate(None, None, extra={"locale": None})
        )
        self.set_password(password)

    @classmethod
    def _after_postgeneration(cls, instance, create, results=None):
        """Save again the instance if creating and at least one hook ran."""
        if create and results and not cls._meta.skip_postgeneration_save:
            # Some post-generation hooks ran, and may have modified us.
            instance.save()


class MembershipFactory(DjangoModelFactory):
    class Meta:
        model = Membership

    user = factory.SubFactory(UserFactory)
    org = factory.SubFactory(OrganizationFactory)
    role = RoleCode.MEMBER
    is_active = True


class PagePermissionFactory(DjangoModelFactory):
    class Meta:
        model = PagePermission

    org = factory.SubFactory(OrganizationFactory)
    user = factory.SubFactory(UserFactory)
    page = PageFeature.REPORTS
    can_access = True
