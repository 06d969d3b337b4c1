from django.urls import path

from plangate.billing import views

app_name = "billing"

urlpatterns = [
    path("plans/", views.PlanListView.as_view(), name="plans"),
    path(
        "orgs/<slug:org_slug>/subscription/",
        views.SubscriptionView.as_view(),
        name="subscription",
    ),
    path(
        "orgs/<slug:org_slug>/change-plan/",
        views.ChangePlanView.as_view(),
        name="change-plan",
    ),
    path(
        "orgs/<slug:org_slug>/downgrade/",
        views.DowngradeView.as_view(),
        name="downgrade",
    ),
    path(
        "orgs/<slug:org_slug>/checkout/",
        views.CheckoutView.as_view(),
        name="checkout",
    ),
    path(
        "orgs/<slug:org_slug>/portal/",
        views.PortalView.as_view(),
        name="portal",
    ),
    path(
        "orgs/<slug:org_slug>/invoices/",
        views.InvoiceListView.as_view(),
        name="invoices",
    ),
    path(
        "orgs/<slug:org_slug>/access/",
        views.PageAccessView.as_view(),
        name="access",
    ),
]
