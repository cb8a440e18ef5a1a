from decimal import Decimal

from django.db.models import Sum
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import record_activity_from_request
from common.permissions import RoleCapabilityPermission
from common.utils import format_currency, parse_date_bound, to_money
from expenses.models import Expense
from expenses.serializers import ExpenseSerializer


class ExpenseViewSet(mixins.ListModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    serializer_class = ExpenseSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "expenses.view",
        "total": "expenses.view",
        "create": "expenses.create",
    }

    def get_queryset(self):
        qs = Expense.objects.select_related("user")
        start_date = self.request.query_params.get("start_date")
        end_date = self.request.query_params.get("end_date")
        if start_date:
            qs = qs.filter(created_at__gte=parse_date_bound(start_date, "start_date"))
        if end_date:
            qs = qs.filter(created_at__lte=parse_date_bound(end_date, "end_date", end=True))
        return qs.order_by("-created_at", "-id")

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        expense = serializer.save(user=request.user)
        record_activity_from_request(
            request,
            action="expense.create",
            description=f"Recorded expense of {format_currency(expense.amount)}: {expense.reason}",
            metadata={"expense_id": expense.id, "amount": expense.amount, "reason": expense.reason},
        )
        return Response(
            {
                "success": True,
                "message": f"Expense of {format_currency(expense.amount)} recorded.",
                "expense": self.get_serializer(expense).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=["get"], url_path="total")
    def total(self, request):
        total = to_money(Expense.objects.aggregate(total=Sum("amount"))["total"] or Decimal("0"))
        return Response({"total": str(total), "display": format_currency(total)})
