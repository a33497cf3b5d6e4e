from rest_framework.routers import DefaultRouter

from purchasing.views import PurchaseOrderViewSet, SupplierViewSet, WholesaleCustomerViewSet

router = DefaultRouter()
router.register(r"suppliers", SupplierViewSet, basename="supplier")
router.register(r"wholesale-customers", WholesaleCustomerViewSet, basename="wholesale-customer")
router.register(r"purchase-orders", PurchaseOrderViewSet, basename="purchase-order")

urlpatterns = router.urls
