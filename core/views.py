import logging
import uuid

from django.contrib.auth import get_user_model
from django.db import connections
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.views import TokenObtainPairView

from common.audit import audit_failure_count, record_activity_from_request
from common.pagination import ActivityLogCursorPagination
from common.permissions import RoleCapabilityPermission
from common.utils import parse_date_bound
from core.models import ActivityLog
from core.serializers import (
    ActivityLogSerializer,
    CashierCreateSerializer,
    StaffSerializer,
    UsernameTokenObtainPairSerializer,
)

User = get_user_model()
logger = logging.getLogger(__name__)


class UsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = UsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class StaffViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    queryset = User.objects.all()
    serializer_class = StaffSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "staff.manage",
        "retrieve": "staff.manage",
        "create": "staff.manage",
        "toggle_active": "staff.manage",
    }

    def get_queryset(self):
        qs = super().get_queryset().order_by("-date_joined")
        if self.action == "list":
            qs = qs.filter(role=User.Role.CASHIER)
        return qs

    def get_serializer_class(self):
        if self.action == "create":
            return CashierCreateSerializer
        return super().get_serializer_class()

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        record_activity_from_request(
            request,
            action="staff.create",
            description=f"Created cashier account '{user.username}'",
            metadata={"user_id": user.id, "username": user.username, "role": user.role},
        )
        return Response(
            {"success": True, "message": "Success! Cashier created.", "user": StaffSerializer(user).data},
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="toggle-active")
    def toggle_active(self, request, pk=None):
        user = self.get_object()
        if user.pk == request.user.pk:
            raise ValidationError("You cannot change the status of your own account.")

        user.is_active = not user.is_active
        user.save(update_fields=["is_active"])

        verb = "activated" if user.is_active else "deactivated"
        record_activity_from_request(
            request,
            action="staff.activate" if user.is_active else "staff.deactivate",
            description=f"Cashier '{user.username}' {verb}",
            metadata={"user_id": user.id, "username": user.username, "is_active": user.is_active},
        )
        return Response(
            {"success": True, "message": f"User {verb} successfully.", "user": StaffSerializer(user).data}
        )


class ActivityLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = ActivityLog.objects.select_related("actor")
    serializer_class = ActivityLogSerializer
    pagination_class = ActivityLogCursorPagination
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "logs.view", "retrieve": "logs.view"}

    def get_queryset(self):
        qs = super().get_queryset()

        start_date = self.request.query_params.get("start_date")
        end_date = self.request.query_params.get("end_date")
        actor_id = self.request.query_params.get("actor_id")
        action_tag = self.request.query_params.get("action")

        if start_date:
            qs = qs.filter(created_at__gte=parse_date_bound(start_date, "start_date"))
        if end_date:
            qs = qs.filter(created_at__lte=parse_date_bound(end_date, "end_date", end=True))
        if actor_id:
            try:
                qs = qs.filter(actor_id=uuid.UUID(actor_id))
            except ValueError:
                raise ValidationError({"actor_id": "A valid user id is required."})
        if action_tag:
            qs = qs.filter(action=action_tag)

        return qs


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response(
        {
            "status": "ok",
            "request_id": getattr(request, "request_id", None),
            "audit_failures": audit_failure_count(),
        }
    )


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None), "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
