from django.urls import path
from rest_framework.routers import DefaultRouter

from inventory.views import (
    AvailableToPromiseView,
    InventoryRecordViewSet,
    InventoryReservationViewSet,
    LocationViewSet,
    ManualAdjustmentView,
    ProductViewSet,
    StockMovementViewSet,
)

router = DefaultRouter()
router.register(r"products", ProductViewSet, basename="product")
router.register(r"locations", LocationViewSet, basename="location")
router.register(r"inventory/movements", StockMovementViewSet, basename="stock-movement")
router.register(r"inventory", InventoryRecordViewSet, basename="inventory-record")
router.register(r"reservations", InventoryReservationViewSet, basename="reservation")

# Listed before the router so these paths win over inventory/<pk>/.
urlpatterns = [
    path("inventory/available-to-promise/", AvailableToPromiseView.as_view(), name="available-to-promise"),
    path("inventory/adjust/", ManualAdjustmentView.as_view(), name="inventory-adjust"),
] + router.urls
