"""Pure money arithmetic for sales, payments and customer balances.

Nothing in here touches the database beyond reading already-loaded
relations, so every function can be called inside or outside a transaction.
"""

from decimal import Decimal

from common.utils import ZERO, to_money

OUTSTANDING_STATUSES = ("Credit", "Partial")


def _amount(payment):
    return Decimal(getattr(payment, "amount", payment) or 0)


def total_paid(payments):
    return to_money(sum((_amount(p) for p in payments), ZERO))


def sale_due(total, payments):
    """Raw due for a sale; a negative value means it was over-applied."""
    return to_money(Decimal(total) - total_paid(payments))


def display_due(total, payments):
    return max(sale_due(total, payments), ZERO)


def customer_outstanding(sales):
    outstanding = ZERO
    for sale in sales:
        if sale.payment_status not in OUTSTANDING_STATUSES:
            continue
        outstanding += display_due(sale.total_amount, sale.payments.all())
    return to_money(outstanding)


def derive_payment_status(total, paid):
    total = Decimal(total)
    paid = Decimal(paid or 0)
    if paid >= total:
        return "Paid"
    if paid > 0:
        return "Partial"
    return "Credit"


def line_subtotal(price, quantity, discount=ZERO, discount_type="amount"):
    gross = Decimal(price) * Decimal(quantity)
    discount = Decimal(discount or 0)
    if discount_type == "percentage":
        net = gross * (Decimal("1") - discount / Decimal("100"))
    else:
        net = gross - discount
    return to_money(max(net, ZERO))
