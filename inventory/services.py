import logging

from django.conf import settings
from django.db import transaction
from django.db.models import DecimalField, F, Sum

from common.exceptions import InsufficientStock
from common.utils import ZERO, to_money
from inventory.models import InventoryLog, Product

logger = logging.getLogger(__name__)


def decrement_stock(product_id, quantity):
    """Take ``quantity`` units off a product's stock.

    The decrement is a single conditional UPDATE so two concurrent sales can
    never both take the last units. Raises ``InsufficientStock`` when the row
    does not hold enough stock, unless ``POS_ALLOW_NEGATIVE_STOCK`` is set.
    """
    qs = Product.objects.filter(id=product_id)
    if not getattr(settings, "POS_ALLOW_NEGATIVE_STOCK", False):
        qs = qs.filter(quantity__gte=quantity)

    updated = qs.update(quantity=F("quantity") - quantity)
    if updated:
        return

    product = Product.objects.filter(id=product_id).only("name", "quantity").first()
    available = product.quantity if product else 0
    name = product.name if product else str(product_id)
    logger.warning(
        "insufficient_stock product=%s requested=%s available=%s",
        product_id,
        quantity,
        available,
    )
    raise InsufficientStock(f"Insufficient stock for {name}: requested {quantity}, available {available}.")


def update_product_with_reason(product, validated_data, *, reason=None, user=None):
    """Apply a product edit; a quantity change must carry a reason and writes an InventoryLog."""
    with transaction.atomic():
        product = Product.objects.select_for_update().get(pk=product.pk)
        quantity_before = product.quantity
        new_quantity = validated_data.get("quantity", quantity_before)

        for field, value in validated_data.items():
            setattr(product, field, value)
        product.save()

        log = None
        if new_quantity != quantity_before:
            log = InventoryLog.objects.create(
                product=product,
                quantity_change=new_quantity - quantity_before,
                quantity_before=quantity_before,
                quantity_after=new_quantity,
                reason=reason,
                user=user if getattr(user, "is_authenticated", False) else None,
            )

    return product, log


def inventory_stats():
    products = Product.objects.all()
    totals = products.aggregate(
        total_cost_value=Sum(F("cost_price") * F("quantity"), output_field=DecimalField(max_digits=18, decimal_places=2)),
        total_selling_value=Sum(F("selling_price") * F("quantity"), output_field=DecimalField(max_digits=18, decimal_places=2)),
    )
    return {
        "total_count": products.count(),
        "total_cost_value": to_money(totals["total_cost_value"] or ZERO),
        "total_selling_value": to_money(totals["total_selling_value"] or ZERO),
        "low_stock_count": products.filter(quantity__lt=F("low_stock_threshold")).count(),
    }


def low_stock_products(limit=10):
    return list(Product.objects.filter(quantity__lt=F("low_stock_threshold")).order_by("quantity")[:limit])
