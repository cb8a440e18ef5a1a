from collections import OrderedDict
from datetime import datetime, time
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.core.cache import cache
from django.db.models import Count, DecimalField, F, Q, Sum
from django.db.models.functions import Coalesce
from django.utils.dateparse import parse_date
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.permissions import RoleCapabilityPermission
from common.utils import format_currency, to_money
from expenses.models import Expense
from inventory.services import low_stock_products
from sales.models import Customer, Sale, SaleItem

MONEY_OUTPUT = DecimalField(max_digits=18, decimal_places=2)


class BaseReportView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "dashboard.view"}
    cache_timeout = 30

    def _parse_timezone(self, tz_name):
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError({"timezone": "Invalid IANA timezone."})

    def _day_range(self, request, tz):
        raw_date = request.query_params.get("date")
        if not raw_date:
            raise ValidationError({"date": "Date parameter required."})
        try:
            day = parse_date(raw_date)
        except ValueError:
            day = None
        if day is None:
            raise ValidationError({"date": "Use the YYYY-MM-DD format."})

        start = datetime.combine(day, time.min).replace(tzinfo=tz)
        end = datetime.combine(day, time.max).replace(tzinfo=tz)
        return day, start, end

    def _cached(self, request, key, callback):
        cache_key = f"reports:{key}:{request.get_full_path()}"
        payload = cache.get(cache_key)
        if payload is None:
            payload = callback()
            cache.set(cache_key, payload, self.cache_timeout)
        return payload


class DashboardStatsView(BaseReportView):
    """Takings, profit and expenses for one calendar day."""

    def get(self, request):
        tz_name = request.query_params.get("timezone") or settings.TIME_ZONE
        tz = self._parse_timezone(tz_name)
        day, start, end = self._day_range(request, tz)

        def run():
            sales = Sale.objects.filter(date__gte=start, date__lte=end)
            sale_totals = sales.aggregate(
                revenue=Coalesce(Sum("total_amount"), Decimal("0.00"), output_field=MONEY_OUTPUT),
                sales_count=Count("id"),
                credit_sales_count=Count("id", filter=Q(payment_status=Sale.PaymentStatus.CREDIT)),
            )
            cost = SaleItem.objects.filter(sale__in=sales).aggregate(
                total=Coalesce(
                    Sum(F("cost_price_snapshot") * F("quantity"), output_field=MONEY_OUTPUT),
                    Decimal("0.00"),
                    output_field=MONEY_OUTPUT,
                )
            )["total"]
            expenses = Expense.objects.filter(created_at__gte=start, created_at__lte=end).aggregate(
                total=Coalesce(Sum("amount"), Decimal("0.00"), output_field=MONEY_OUTPUT)
            )["total"]

            revenue = to_money(sale_totals["revenue"])
            profit = to_money(revenue - cost)
            outstanding = Customer.objects.aggregate(
                total=Coalesce(Sum("balance"), Decimal("0.00"), output_field=MONEY_OUTPUT)
            )["total"]

            return OrderedDict(
                date=day.isoformat(),
                timezone=tz_name,
                total_revenue=str(revenue),
                total_cost=str(to_money(cost)),
                total_profit=str(profit),
                total_expenses=str(to_money(expenses)),
                net_income=str(to_money(profit - expenses)),
                sales_count=sale_totals["sales_count"],
                credit_sales_count=sale_totals["credit_sales_count"],
                outstanding_credit=str(to_money(outstanding)),
                display=OrderedDict(
                    total_revenue=format_currency(revenue),
                    total_profit=format_currency(profit),
                    total_expenses=format_currency(expenses),
                ),
                low_stock=[
                    OrderedDict(
                        id=str(product.id),
                        name=product.name,
                        quantity=product.quantity,
                        low_stock_threshold=product.low_stock_threshold,
                    )
                    for product in low_stock_products()
                ],
            )

        payload = self._cached(request, "dashboard-stats", run)
        response = Response({"success": True, "stats": payload})
        response["Cache-Control"] = f"private, max-age={self.cache_timeout}"
        return response
