from django.db import models
from django.utils.translation import gettext_lazy as _


class RoleCode(models.TextChoices):
    """
    Membership roles within an organization.

    OWNER and ADMIN are billing managers; MEMBER access to pages is governed
    by explicit page permissions.
    """

    OWNER = "owner", _("Owner")
    ADMIN = "admin", _("Admin")
    MEMBER = "member", _("Member")


BILLING_MANAGER_ROLES = frozenset({RoleCode.OWNER, RoleCode.ADMIN})

RESERVED_ORG_SLUGS = frozenset(
    {
        "admin",
        "api",
        "app",
        "billing",
        "stripe",
        "static",
        "media",
    },
)
