"""
Public API router.

Billing endpoints are plain APIViews scoped by organization slug, so they are
included by path rather than registered on a router.
"""

from django.urls import include
from django.urls import path

app_name = "api"
urlpatterns = [
    path("billing/", include("plangate.billing.urls", namespace="billing")),
]
