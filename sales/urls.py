from django.urls import path
from rest_framework.routers import DefaultRouter

from sales.reports import DashboardStatsView
from sales.views import (
    BooksViewSet,
    CreditSaleView,
    CustomerViewSet,
    DraftViewSet,
    ImmediateSaleView,
    OrderViewSet,
    PaymentAllocationView,
)

router = DefaultRouter()
router.register(r"customers", CustomerViewSet, basename="customer")
router.register(r"books", BooksViewSet, basename="book")
router.register(r"orders", OrderViewSet, basename="order")
router.register(r"drafts", DraftViewSet, basename="draft")

urlpatterns = router.urls

urlpatterns += [
    path("pos/complete/", ImmediateSaleView.as_view(), name="pos-complete"),
    path("pos/credit/", CreditSaleView.as_view(), name="pos-credit"),
    path("payments/allocate/", PaymentAllocationView.as_view(), name="payment-allocate"),
    path("dashboard/stats/", DashboardStatsView.as_view(), name="dashboard-stats"),
]
