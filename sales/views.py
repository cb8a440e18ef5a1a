from django.db import transaction
from django.db.models import Prefetch, Q
from django.utils.dateparse import parse_date
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import record_activity_from_request
from common.permissions import RoleCapabilityPermission
from common.utils import format_currency, local_day_bounds
from sales.models import Customer, Draft, Payment, Sale
from sales.serializers import (
    CreditSaleSerializer,
    CustomerSerializer,
    DraftCheckoutSerializer,
    DraftSerializer,
    ImmediateSaleSerializer,
    PaymentAllocationSerializer,
    PaymentSerializer,
    SaleSerializer,
)
from sales.services import allocate_payment, reconcile_customer_balance, settle_credit_sale, settle_immediate_sale


def _sale_queryset():
    return Sale.objects.select_related("customer", "user").prefetch_related(
        "items__product",
        Prefetch("payments", queryset=Payment.objects.order_by("date", "id")),
    )


def _day_bounds(value, field_name):
    try:
        day = parse_date(value or "")
    except ValueError:
        day = None
    if day is None:
        raise ValidationError({field_name: "Use the YYYY-MM-DD format."})
    return local_day_bounds(day)


def _settlement_payload(result, message):
    return {
        "success": True,
        "message": message,
        "sale_id": str(result.sale.id),
        "total_amount": str(result.total_amount),
        "change_given": str(result.change_given),
        "payment_status": result.sale.payment_status,
        "sale": SaleSerializer(_sale_queryset().get(pk=result.sale.pk)).data,
    }


def _immediate_message(result):
    return f"Sale completed! Total: {format_currency(result.total_amount)}, Change: {format_currency(result.change_given)}"


def _credit_message(result):
    return f"Added to book! Amount: {format_currency(result.total_amount)}"


class CustomerViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "customers.view",
        "retrieve": "customers.view",
        "create": "customers.manage",
        "reconcile": "customers.reconcile",
    }

    def get_queryset(self):
        qs = super().get_queryset()
        search = (self.request.query_params.get("search") or "").strip()
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(phone__icontains=search))
        return qs.order_by("name", "id")

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        customer = serializer.save()
        record_activity_from_request(
            request,
            action="customer.create",
            description=f"Added customer '{customer.name}'",
            metadata={"customer_id": customer.id, "phone": customer.phone},
        )
        return Response(
            {
                "success": True,
                "message": "Customer created successfully!",
                "customer": self.get_serializer(customer).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["get"], url_path="reconcile")
    def reconcile(self, request, pk=None):
        report = reconcile_customer_balance(self.get_object())
        return Response(
            {
                "customer_id": str(report.customer_id),
                "stored_balance": str(report.stored_balance),
                "expected_balance": str(report.expected_balance),
                "drift": str(report.drift),
                "in_sync": report.drift == 0,
            }
        )


class ImmediateSaleView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "pos.access"}

    def post(self, request):
        serializer = ImmediateSaleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = settle_immediate_sale(
            customer_id=data.get("customer_id"),
            items=data["items"],
            amount_paid=data.get("amount_paid"),
            is_delivered=data["is_delivered"],
            actor=request.user,
        )
        return Response(_settlement_payload(result, _immediate_message(result)), status=status.HTTP_201_CREATED)


class CreditSaleView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "pos.access"}

    def post(self, request):
        serializer = CreditSaleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = settle_credit_sale(
            customer_id=data["customer_id"],
            items=data["items"],
            is_delivered=data["is_delivered"],
            actor=request.user,
        )
        return Response(_settlement_payload(result, _credit_message(result)), status=status.HTTP_201_CREATED)


class PaymentAllocationView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "payments.record"}

    def post(self, request):
        serializer = PaymentAllocationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = allocate_payment(
            customer_id=data["customer_id"],
            sale_ids=data["sale_ids"],
            amount=data["amount"],
            actor=request.user,
        )

        if result.change > 0:
            message = (
                f"Payment of {format_currency(result.applied_amount)} recorded. "
                f"Change returned: {format_currency(result.change)}"
            )
        else:
            message = f"Payment of {format_currency(result.applied_amount)} recorded successfully!"

        return Response(
            {
                "success": True,
                "message": message,
                "applied_amount": str(result.applied_amount),
                "change": str(result.change),
                "remaining_balance": str(result.remaining_balance),
                "sales_touched": result.sales_touched,
                "payments": PaymentSerializer(result.payments, many=True).data,
            }
        )


class BooksViewSet(viewsets.ReadOnlyModelViewSet):
    """Credit and partially paid sales still owed by customers."""

    serializer_class = SaleSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "books.view", "retrieve": "books.view"}

    def get_queryset(self):
        qs = _sale_queryset().filter(
            customer__isnull=False,
            payment_status__in=[Sale.PaymentStatus.CREDIT, Sale.PaymentStatus.PARTIAL],
        )
        search = (self.request.query_params.get("search") or "").strip()
        if search:
            qs = qs.filter(Q(customer__name__icontains=search) | Q(customer__phone__icontains=search))
        return qs.order_by("date", "id")


class OrderViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = SaleSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "orders.view",
        "retrieve": "orders.view",
        "deliver": "orders.deliver",
    }

    def get_queryset(self):
        qs = _sale_queryset()
        params = self.request.query_params

        order_status = params.get("status")
        if order_status and order_status != "all":
            qs = qs.filter(order_status=order_status)

        payment_status = params.get("payment_status")
        if payment_status and payment_status != "all":
            qs = qs.filter(payment_status=payment_status)

        is_delivered = params.get("is_delivered")
        if is_delivered in {"true", "false"}:
            qs = qs.filter(is_delivered=is_delivered == "true")

        search = (params.get("search") or "").strip()
        if search:
            qs = qs.filter(
                Q(customer__name__icontains=search)
                | Q(customer__phone__icontains=search)
                | Q(user__username__icontains=search)
            )

        if params.get("start_date"):
            start, _ = _day_bounds(params.get("start_date"), "start_date")
            qs = qs.filter(date__gte=start)
        if params.get("end_date"):
            _, end = _day_bounds(params.get("end_date"), "end_date")
            qs = qs.filter(date__lte=end)

        return qs.order_by("-date", "-id")

    @action(detail=True, methods=["post"], url_path="deliver")
    def deliver(self, request, pk=None):
        sale = self.get_object()
        if sale.is_delivered and sale.order_status == Sale.OrderStatus.COMPLETED:
            return Response({"success": True, "message": "Order was already delivered.", "sale_id": str(sale.id)})

        sale.is_delivered = True
        sale.order_status = Sale.OrderStatus.COMPLETED
        sale.save(update_fields=["is_delivered", "order_status"])
        record_activity_from_request(
            request,
            action="order.delivered",
            description=f"Marked order {sale.id} as delivered",
            metadata={"sale_id": sale.id, "customer_id": sale.customer_id},
        )
        return Response({"success": True, "message": "Order marked as delivered!", "sale_id": str(sale.id)})


class DraftViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    serializer_class = DraftSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "drafts.manage",
        "retrieve": "drafts.manage",
        "create": "drafts.manage",
        "destroy": "drafts.manage",
        "checkout": "drafts.manage",
    }

    def get_queryset(self):
        return Draft.objects.select_related("customer", "user").order_by("-created_at", "-id")

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        draft = serializer.save(user=request.user)
        record_activity_from_request(
            request,
            action="draft.create",
            description=f"Saved draft with {len(draft.items)} item(s)",
            metadata={"draft_id": draft.id, "customer_id": draft.customer_id},
        )
        return Response(
            {"success": True, "message": "Draft saved successfully!", "draft": self.get_serializer(draft).data},
            status=status.HTTP_201_CREATED,
        )

    def destroy(self, request, *args, **kwargs):
        draft = self.get_object()
        draft_id = draft.id
        draft.delete()
        record_activity_from_request(
            request,
            action="draft.delete",
            description="Deleted draft",
            metadata={"draft_id": draft_id},
        )
        return Response({"success": True, "message": "Draft deleted successfully!"})

    @action(detail=True, methods=["post"], url_path="checkout")
    def checkout(self, request, pk=None):
        draft = self.get_object()
        serializer = DraftCheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        with transaction.atomic():
            if data["mode"] == DraftCheckoutSerializer.Mode.CREDIT:
                result = settle_credit_sale(
                    customer_id=draft.customer_id,
                    items=draft.items,
                    is_delivered=bool(data["is_delivered"]),
                    actor=request.user,
                )
                message = _credit_message(result)
            else:
                result = settle_immediate_sale(
                    customer_id=draft.customer_id,
                    items=draft.items,
                    amount_paid=data.get("amount_paid"),
                    is_delivered=True if data["is_delivered"] is None else data["is_delivered"],
                    actor=request.user,
                )
                message = _immediate_message(result)
            draft.delete()

        return Response(_settlement_payload(result, message), status=status.HTTP_201_CREATED)
