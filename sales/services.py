import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from common.audit import record_activity
from common.utils import ZERO, format_currency, to_money
from inventory.models import Product
from inventory.services import decrement_stock
from sales.ledger import OUTSTANDING_STATUSES, customer_outstanding, derive_payment_status, line_subtotal
from sales.models import Customer, Payment, Sale, SaleItem

logger = logging.getLogger(__name__)

DISCOUNT_TYPES = {choice.value for choice in SaleItem.DiscountType}


@dataclass
class AllocationResult:
    applied_amount: Decimal
    change: Decimal
    remaining_balance: Decimal
    payments: list = field(default_factory=list)
    sales_touched: int = 0


@dataclass
class SettlementResult:
    sale: Sale
    total_amount: Decimal
    change_given: Decimal = ZERO


@dataclass
class BalanceReconciliation:
    customer_id: object
    stored_balance: Decimal
    expected_balance: Decimal
    drift: Decimal
    fixed: bool = False


def _decimal(value, field_name, index):
    try:
        return to_money(value if value not in (None, "") else 0)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({"items": {index: {field_name: "A valid number is required."}}})


def _normalize_cart(items):
    """Validate cart lines and resolve their products before anything is written."""
    if not items:
        raise ValidationError({"items": "Cart is empty."})

    lines = []
    for index, item in enumerate(items):
        try:
            quantity = int(item.get("quantity"))
        except (TypeError, ValueError):
            raise ValidationError({"items": {index: {"quantity": "A valid integer is required."}}})
        if quantity <= 0:
            raise ValidationError({"items": {index: {"quantity": "Quantity must be greater than zero."}}})

        price = _decimal(item.get("price"), "price", index)
        if price < 0:
            raise ValidationError({"items": {index: {"price": "Price cannot be negative."}}})

        discount = _decimal(item.get("discount"), "discount", index)
        discount_type = item.get("discount_type") or SaleItem.DiscountType.AMOUNT
        if discount_type not in DISCOUNT_TYPES:
            raise ValidationError({"items": {index: {"discount_type": "Discount type must be 'amount' or 'percentage'."}}})
        if discount < 0:
            raise ValidationError({"items": {index: {"discount": "Discount cannot be negative."}}})
        if discount_type == SaleItem.DiscountType.PERCENTAGE and discount > 100:
            raise ValidationError({"items": {index: {"discount": "Percentage discount cannot exceed 100."}}})

        if item.get("subtotal") in (None, ""):
            subtotal = line_subtotal(price, quantity, discount, discount_type)
        else:
            subtotal = _decimal(item.get("subtotal"), "subtotal", index)
            if subtotal < 0:
                raise ValidationError({"items": {index: {"subtotal": "Subtotal cannot be negative."}}})

        lines.append(
            {
                "product_id": _parse_uuid(
                    item.get("product_id"), {"items": {index: {"product_id": "A valid product id is required."}}}
                ),
                "quantity": quantity,
                "price": price,
                "discount": discount,
                "discount_type": discount_type,
                "subtotal": subtotal,
            }
        )

    product_ids = {str(line["product_id"]) for line in lines}
    products = {str(product.id): product for product in Product.objects.filter(id__in=product_ids)}
    missing = sorted(product_ids - set(products))
    if missing:
        raise NotFound(f"Product not found: {', '.join(missing)}.")

    for line in lines:
        line["product"] = products[str(line["product_id"])]
    return lines


def _parse_uuid(value, error):
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(error)


def _get_customer(customer_id, *, lock=False):
    qs = Customer.objects.all()
    if lock:
        qs = qs.select_for_update()
    customer = qs.filter(pk=_parse_uuid(customer_id, {"customer_id": "A valid customer id is required."})).first()
    if customer is None:
        raise NotFound("Customer not found.")
    return customer


def _require_actor(actor):
    if actor is None or not getattr(actor, "is_authenticated", False):
        raise ValidationError({"actor": "A signed-in staff member is required to record a sale."})


def _persist_sale(*, actor, customer, lines, total, payment_status, amount_paid, change_given, is_delivered):
    sale = Sale.objects.create(
        user=actor,
        customer=customer,
        total_amount=total,
        payment_status=payment_status,
        order_status=Sale.OrderStatus.COMPLETED if is_delivered else Sale.OrderStatus.PENDING_DELIVERY,
        amount_paid=amount_paid,
        change_given=change_given,
        is_delivered=is_delivered,
    )
    SaleItem.objects.bulk_create(
        [
            SaleItem(
                sale=sale,
                product=line["product"],
                quantity=line["quantity"],
                price_snapshot=line["price"],
                cost_price_snapshot=line["product"].cost_price,
                discount=line["discount"],
                discount_type=line["discount_type"],
                subtotal=line["subtotal"],
            )
            for line in lines
        ]
    )
    for line in lines:
        decrement_stock(line["product"].id, line["quantity"])
    return sale


def settle_immediate_sale(*, customer_id=None, items, amount_paid=None, is_delivered=True, actor):
    """Record a counter sale paid now, fully or (for a known customer) in part.

    A missing or zero ``amount_paid`` means the customer paid the exact total.
    """
    _require_actor(actor)
    lines = _normalize_cart(items)
    total = to_money(sum((line["subtotal"] for line in lines), ZERO))

    try:
        tendered = ZERO if amount_paid in (None, "") else to_money(amount_paid)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({"amount_paid": "A valid number is required."})
    if tendered < 0:
        raise ValidationError({"amount_paid": "Amount paid cannot be negative."})
    if tendered == 0:
        tendered = total
    if tendered < total and customer_id is None:
        raise ValidationError({"amount_paid": "Walk-in sales must be paid in full."})

    change_given = max(tendered - total, ZERO)
    payment_status = derive_payment_status(total, tendered)

    with transaction.atomic():
        customer = _get_customer(customer_id, lock=True) if customer_id is not None else None
        sale = _persist_sale(
            actor=actor,
            customer=customer,
            lines=lines,
            total=total,
            payment_status=payment_status,
            amount_paid=tendered,
            change_given=change_given,
            is_delivered=is_delivered,
        )
        if total > 0:
            Payment.objects.create(sale=sale, customer=customer, amount=min(tendered, total), date=sale.date)

        shortfall = total - tendered
        if customer is not None and shortfall > 0:
            customer.balance = to_money(customer.balance) + shortfall
            customer.save(update_fields=["balance", "updated_at"])

    logger.info(
        "sale_completed total=%s paid=%s status=%s",
        total,
        tendered,
        payment_status,
        extra={"sale_id": str(sale.id), "customer_id": str(customer.id) if customer else None},
    )
    record_activity(
        actor=actor,
        action="sale.complete",
        description=f"Completed sale of {format_currency(total)} ({payment_status})",
        metadata={
            "sale_id": sale.id,
            "customer_id": customer.id if customer else None,
            "total_amount": total,
            "amount_paid": tendered,
            "change_given": change_given,
            "items": len(lines),
        },
    )
    return SettlementResult(sale=sale, total_amount=total, change_given=change_given)


def settle_credit_sale(*, customer_id, items, is_delivered=False, actor):
    """Record a sale on the customer's book; nothing is paid now."""
    _require_actor(actor)
    if customer_id is None:
        raise ValidationError({"customer_id": "Customer is required for credit sale."})
    lines = _normalize_cart(items)
    total = to_money(sum((line["subtotal"] for line in lines), ZERO))

    with transaction.atomic():
        customer = _get_customer(customer_id, lock=True)
        sale = _persist_sale(
            actor=actor,
            customer=customer,
            lines=lines,
            total=total,
            payment_status=Sale.PaymentStatus.CREDIT,
            amount_paid=ZERO,
            change_given=ZERO,
            is_delivered=is_delivered,
        )
        customer.balance = to_money(customer.balance) + total
        customer.save(update_fields=["balance", "updated_at"])

    logger.info(
        "credit_sale_recorded total=%s",
        total,
        extra={"sale_id": str(sale.id), "customer_id": str(customer.id)},
    )
    record_activity(
        actor=actor,
        action="sale.credit",
        description=f"Added {format_currency(total)} to {customer.name}'s book",
        metadata={"sale_id": sale.id, "customer_id": customer.id, "total_amount": total, "items": len(lines)},
    )
    return SettlementResult(sale=sale, total_amount=total, change_given=ZERO)


def _paid_so_far(sale):
    return to_money(sale.payments.aggregate(total=Sum("amount"))["total"] or ZERO)


def allocate_payment(*, customer_id, sale_ids, amount, actor=None):
    """Spread one customer payment across their sales, oldest first.

    Money left after every selected sale is settled comes back as change and
    is never stored against a sale.
    """
    try:
        amount = to_money(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({"amount": "A valid number is required."})
    if amount <= 0:
        raise ValidationError({"amount": "Payment amount must be greater than zero."})

    sale_ids = list(
        dict.fromkeys(
            _parse_uuid(sale_id, {"sale_ids": "A valid sale id is required."}) for sale_id in (sale_ids or [])
        )
    )
    if not sale_ids:
        raise ValidationError({"sale_ids": "Select at least one sale."})

    with transaction.atomic():
        customer = _get_customer(customer_id, lock=True)
        sales = list(
            Sale.objects.select_for_update().filter(pk__in=sale_ids, customer=customer).order_by("date", "id")
        )
        if len(sales) != len(sale_ids):
            raise NotFound("One or more sales were not found for this customer.")

        remaining = amount
        payments = []
        now = timezone.now()
        for sale in sales:
            if remaining <= 0:
                break
            paid = _paid_so_far(sale)
            due = to_money(sale.total_amount) - paid
            if due <= 0:
                continue

            applied = min(remaining, due)
            remaining -= applied
            note = f"Overpayment. Balance: {format_currency(remaining)}" if remaining > 0 else None
            payments.append(
                Payment.objects.create(sale=sale, customer=customer, amount=applied, date=now, note=note)
            )

            sale.payment_status = derive_payment_status(sale.total_amount, paid + applied)
            sale.save(update_fields=["payment_status"])

        applied_amount = amount - remaining
        change = max(remaining, ZERO)
        customer.balance = max(to_money(customer.balance) - applied_amount, ZERO)
        customer.save(update_fields=["balance", "updated_at"])

    result = AllocationResult(
        applied_amount=applied_amount,
        change=change,
        remaining_balance=customer.balance,
        payments=payments,
        sales_touched=len(payments),
    )
    logger.info(
        "payment_allocated applied=%s change=%s sales=%s",
        applied_amount,
        change,
        result.sales_touched,
        extra={"customer_id": str(customer.id)},
    )
    record_activity(
        actor=actor,
        action="payment.record",
        description=f"Recorded payment of {format_currency(applied_amount)} from {customer.name}",
        metadata={
            "customer_id": customer.id,
            "applied_amount": applied_amount,
            "change": change,
            "remaining_balance": customer.balance,
            "sales_touched": result.sales_touched,
        },
    )
    return result


def reconcile_customer_balance(customer, *, fix=False):
    """Compare a customer's stored balance with the dues of their open sales."""
    sales = customer.sales.filter(payment_status__in=OUTSTANDING_STATUSES).prefetch_related("payments")
    expected = customer_outstanding(sales)
    stored = to_money(customer.balance)
    drift = stored - expected

    fixed = False
    if fix and drift != 0:
        customer.balance = expected
        customer.save(update_fields=["balance", "updated_at"])
        fixed = True
        logger.warning(
            "customer_balance_corrected stored=%s expected=%s",
            stored,
            expected,
            extra={"customer_id": str(customer.id)},
        )

    return BalanceReconciliation(
        customer_id=customer.id,
        stored_balance=stored,
        expected_balance=expected,
        drift=drift,
        fixed=fixed,
    )
