import uuid

from django.db.models import F, Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import record_activity_from_request
from common.permissions import RoleCapabilityPermission
from common.utils import format_currency
from inventory.models import Category, InventoryLog, Product, Unit
from inventory.serializers import CategorySerializer, InventoryLogSerializer, ProductSerializer, UnitSerializer
from inventory.services import inventory_stats, update_product_with_reason

PRODUCT_SORT_ORDERING = {
    "last-added": ("-created_at", "-id"),
    "first-added": ("created_at", "id"),
    "alphabetic": ("name", "id"),
}


class CategoryViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    queryset = Category.objects.all()
    serializer_class = CategorySerializer
    pagination_class = None
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "create": "category.manage",
    }

    def perform_create(self, serializer):
        category = serializer.save()
        record_activity_from_request(
            self.request,
            action="category.create",
            description=f"Added category '{category.name}'",
            metadata={"category_id": category.id},
        )


class UnitViewSet(mixins.ListModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    queryset = Unit.objects.all()
    serializer_class = UnitSerializer
    pagination_class = None
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "inventory.view", "create": "inventory.manage"}

    def perform_create(self, serializer):
        unit = serializer.save()
        record_activity_from_request(
            self.request,
            action="unit.create",
            description=f"Added unit '{unit.name}'",
            metadata={"unit_id": unit.id},
        )


class ProductViewSet(viewsets.ModelViewSet):
    queryset = Product.objects.select_related("category")
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "stats": "inventory.view",
        "history": "inventory.view",
        "create": "inventory.manage",
        "update": "inventory.manage",
        "partial_update": "inventory.manage",
        "destroy": "inventory.manage",
    }

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params

        search = (params.get("search") or "").strip()
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(category__name__icontains=search))

        category = params.get("category")
        if category and category != "all":
            qs = qs.filter(Q(category__name=category) | Q(category_id__in=_uuid_or_empty(category)))

        if params.get("low_stock_only") in {"1", "true", "True"}:
            qs = qs.filter(quantity__lt=F("low_stock_threshold"))

        ordering = PRODUCT_SORT_ORDERING.get(params.get("sort_by") or "last-added", PRODUCT_SORT_ORDERING["last-added"])
        return qs.order_by(*ordering)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        product = serializer.save()
        record_activity_from_request(
            request,
            action="product.create",
            description=f"Added product '{product.name}' ({product.quantity} {product.unit})",
            metadata={
                "product_id": product.id,
                "quantity": product.quantity,
                "selling_price": product.selling_price,
            },
        )
        return Response(
            {
                "success": True,
                "message": "Success! Product added to inventory.",
                "product": self.get_serializer(product).data,
            },
            status=status.HTTP_201_CREATED,
        )

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        instance = self.get_object()
        serializer = self.get_serializer(instance, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)

        validated = dict(serializer.validated_data)
        reason = validated.pop("reason", "") or None
        product, log = update_product_with_reason(instance, validated, reason=reason, user=request.user)

        metadata = {"product_id": product.id, "fields": sorted(validated.keys())}
        if log is not None:
            metadata.update(
                {
                    "quantity_before": log.quantity_before,
                    "quantity_after": log.quantity_after,
                    "reason": log.reason,
                }
            )
        record_activity_from_request(
            request,
            action="product.update",
            description=f"Updated product '{product.name}'",
            metadata=metadata,
        )
        return Response(
            {
                "success": True,
                "message": "Product updated successfully!",
                "product": self.get_serializer(product).data,
            }
        )

    def destroy(self, request, *args, **kwargs):
        product = self.get_object()
        product_id = product.id
        name = product.name
        product.delete()
        record_activity_from_request(
            request,
            action="product.delete",
            description=f"Deleted product '{name}'",
            metadata={"product_id": product_id},
        )
        return Response({"success": True, "message": "Success! Product deleted.", "product_id": str(product_id)})

    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request):
        data = inventory_stats()
        data["total_cost_value_display"] = format_currency(data["total_cost_value"])
        data["total_selling_value_display"] = format_currency(data["total_selling_value"])
        return Response(data)

    @action(detail=True, methods=["get"], url_path="history")
    def history(self, request, pk=None):
        product = self.get_object()
        logs = InventoryLog.objects.filter(product=product).select_related("product", "user").order_by("-created_at")
        return Response(InventoryLogSerializer(logs, many=True).data)


def _uuid_or_empty(value):
    try:
        return [uuid.UUID(str(value))]
    except ValueError:
        return []
