from rest_framework.routers import DefaultRouter

from inventory.views import CategoryViewSet, ProductViewSet, UnitViewSet

router = DefaultRouter()
router.register(r"categories", CategoryViewSet, basename="category")
router.register(r"units", UnitViewSet, basename="unit")
router.register(r"products", ProductViewSet, basename="product")

urlpatterns = router.urls
