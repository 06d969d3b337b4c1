"""
Mixin and permission classes for org-scoped API views.

This module provides org resolution from URL kwargs and enforces org
membership (or billing-manager rights) for API endpoints.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.shortcuts import get_object_or_404
from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView

    from plangate.users.models import Membership
    from plangate.users.models import Organization


class OrgScopedMixin:
    """
    Mixin that resolves the org from the URL path.

    Expects the URL pattern to include an ``org_slug`` kwarg:
        path("orgs/<slug:org_slug>/subscription/", ...)

    Usage:
        class MyView(OrgScopedMixin, APIView):
            def get(self, request, *args, **kwargs):
                org = self.get_org()
    """

    _org: Organization | None = None
    _membership: Membership | None = None

    def get_org(self) -> Organization:
        """
        Return the organization from the URL path.

        Raises Http404 if the org doesn't exist.
        """
        if self._org is None:
            from plangate.users.models import Organization

            org_slug = self.kwargs.get("org_slug")
            self._org = get_object_or_404(Organization, slug=org_slug)
        return self._org

    def get_membership(self) -> Membership | None:
        """Return the user's active membership in the org, or None."""
        if self._membership is None:
            from plangate.users.services import get_membership

            self._membership = get_membership(self.request.user, self.get_org())
        return self._membership


class OrgMembershipPermission(permissions.BasePermission):
    """
    The user must be an active member of the org in the URL.

    Platform super-operators always pass.
    """

    message = "You must be a member of this organization."

    def has_permission(self, request: Request, view: APIView) -> bool:
        if request.user.is_authenticated and request.user.is_super_operator:
            return True
        if not hasattr(view, "get_membership"):
            return True
        return view.get_membership() is not None


class BillingManagerPermission(permissions.BasePermission):
    """The user must be able to manage billing (owner, admin, super-operator)."""

    message = "Only workspace admins can manage billing"

    def has_permission(self, request: Request, view: APIView) -> bool:
        from plangate.users.services import is_billing_manager

        if not hasattr(view, "get_org"):
            return False
        return is_billing_manager(request.user, view.get_org())
