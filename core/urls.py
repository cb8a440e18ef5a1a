from rest_framework.routers import DefaultRouter

from core.views import ActivityLogViewSet, StaffViewSet

router = DefaultRouter()
router.register(r"staff", StaffViewSet, basename="staff")
router.register(r"activity-logs", ActivityLogViewSet, basename="activity-log")

urlpatterns = router.urls
