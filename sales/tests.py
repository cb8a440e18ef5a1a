from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.test import APIClient

from common.exceptions import InsufficientStock
from core.models import ActivityLog
from expenses.models import Expense
from inventory.models import Category, Product
from sales.ledger import customer_outstanding, derive_payment_status, display_due, line_subtotal, sale_due, total_paid
from sales.models import Customer, Draft, Payment, Sale, SaleItem
from sales.services import (
    allocate_payment,
    reconcile_customer_balance,
    settle_credit_sale,
    settle_immediate_sale,
)


class LedgerTests(TestCase):
    def test_total_paid_and_due(self):
        payments = [SimpleNamespace(amount=Decimal("30.00")), SimpleNamespace(amount=Decimal("20.50"))]

        self.assertEqual(total_paid(payments), Decimal("50.50"))
        self.assertEqual(sale_due(Decimal("100.00"), payments), Decimal("49.50"))
        self.assertEqual(total_paid([]), Decimal("0.00"))

    def test_display_due_floors_over_applied_sales_at_zero(self):
        payments = [SimpleNamespace(amount=Decimal("120.00"))]

        self.assertEqual(sale_due(Decimal("100.00"), payments), Decimal("-20.00"))
        self.assertEqual(display_due(Decimal("100.00"), payments), Decimal("0.00"))

    def test_derive_payment_status(self):
        self.assertEqual(derive_payment_status(Decimal("100"), Decimal("100")), "Paid")
        self.assertEqual(derive_payment_status(Decimal("100"), Decimal("150")), "Paid")
        self.assertEqual(derive_payment_status(Decimal("100"), Decimal("0.01")), "Partial")
        self.assertEqual(derive_payment_status(Decimal("100"), Decimal("0")), "Credit")
        self.assertEqual(derive_payment_status(Decimal("100"), None), "Credit")

    def test_line_subtotal_applies_discounts(self):
        self.assertEqual(line_subtotal(Decimal("15.00"), 2), Decimal("30.00"))
        self.assertEqual(line_subtotal(Decimal("15.00"), 2, Decimal("5.00"), "amount"), Decimal("25.00"))
        self.assertEqual(line_subtotal(Decimal("15.00"), 2, Decimal("10"), "percentage"), Decimal("27.00"))
        self.assertEqual(line_subtotal(Decimal("15.00"), 1, Decimal("20.00"), "amount"), Decimal("0.00"))


class SalesTestMixin:
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.user_model = get_user_model()
        self.owner = self.user_model.objects.create_user(username="shop-owner", password="pass1234", role="owner")
        self.cashier = self.user_model.objects.create_user(username="shop-cashier", password="pass1234", role="cashier")
        self.category = Category.objects.create(name="Hardware")
        self.hammer = Product.objects.create(
            name="Hammer",
            category=self.category,
            unit="pcs",
            cost_price=Decimal("10.00"),
            selling_price=Decimal("15.00"),
            quantity=20,
        )
        self.nails = Product.objects.create(
            name="Nails",
            category=self.category,
            unit="box",
            cost_price=Decimal("2.00"),
            selling_price=Decimal("4.00"),
            quantity=5,
        )
        self.customer = Customer.objects.create(name="Nimal Perera", phone="0771234567")
        self.other_customer = Customer.objects.create(name="Kamala Silva", phone="0719876543")

    def cart_line(self, product, quantity, price=None, **extra):
        line = {
            "product_id": str(product.id),
            "product_name": product.name,
            "quantity": quantity,
            "price": str(price if price is not None else product.selling_price),
        }
        line.update(extra)
        return line

    def credit_sale(self, amount, *, customer=None, days_ago=0):
        """Book a credit sale of ``amount`` for one hammer and backdate it."""
        result = settle_credit_sale(
            customer_id=(customer or self.customer).id,
            items=[self.cart_line(self.hammer, 1, price=amount)],
            actor=self.cashier,
        )
        moment = timezone.now() - timedelta(days=days_ago)
        Sale.objects.filter(pk=result.sale.pk).update(date=moment)
        return Sale.objects.get(pk=result.sale.pk)


class SettlementTests(SalesTestMixin, TestCase):
    def test_walk_in_sale_returns_change_and_snapshots_prices(self):
        result = settle_immediate_sale(
            items=[self.cart_line(self.hammer, 2)],
            amount_paid=Decimal("50.00"),
            actor=self.cashier,
        )

        sale = result.sale
        self.assertEqual(result.total_amount, Decimal("30.00"))
        self.assertEqual(result.change_given, Decimal("20.00"))
        self.assertEqual(sale.payment_status, "Paid")
        self.assertIsNone(sale.customer)
        self.assertEqual(sale.payments.get().amount, Decimal("30.00"))

        item = sale.items.get()
        self.assertEqual(item.price_snapshot, Decimal("15.00"))
        self.assertEqual(item.cost_price_snapshot, Decimal("10.00"))
        self.hammer.refresh_from_db()
        self.assertEqual(self.hammer.quantity, 18)
        self.assertTrue(ActivityLog.objects.filter(action="sale.complete").exists())

    def test_snapshot_survives_later_price_changes(self):
        result = settle_immediate_sale(items=[self.cart_line(self.hammer, 1)], actor=self.cashier)
        Product.objects.filter(pk=self.hammer.pk).update(selling_price=Decimal("99.00"), cost_price=Decimal("70.00"))

        item = SaleItem.objects.get(sale=result.sale)

        self.assertEqual(item.price_snapshot, Decimal("15.00"))
        self.assertEqual(item.cost_price_snapshot, Decimal("10.00"))

    def test_amount_paid_defaults_to_total(self):
        result = settle_immediate_sale(items=[self.cart_line(self.nails, 2)], actor=self.cashier)

        self.assertEqual(result.total_amount, Decimal("8.00"))
        self.assertEqual(result.change_given, Decimal("0.00"))
        self.assertEqual(result.sale.amount_paid, Decimal("8.00"))

    def test_percentage_discount_reduces_total(self):
        result = settle_immediate_sale(
            items=[self.cart_line(self.hammer, 2, discount="10", discount_type="percentage")],
            actor=self.cashier,
        )

        self.assertEqual(result.total_amount, Decimal("27.00"))

    def test_partial_payment_for_customer_books_the_shortfall(self):
        result = settle_immediate_sale(
            customer_id=self.customer.id,
            items=[self.cart_line(self.hammer, 2)],
            amount_paid=Decimal("10.00"),
            actor=self.cashier,
        )

        self.assertEqual(result.sale.payment_status, "Partial")
        self.assertEqual(result.sale.payments.get().amount, Decimal("10.00"))
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.balance, Decimal("20.00"))

    def test_underpaid_walk_in_sale_is_rejected(self):
        with self.assertRaises(ValidationError):
            settle_immediate_sale(
                items=[self.cart_line(self.hammer, 2)],
                amount_paid=Decimal("10.00"),
                actor=self.cashier,
            )

        self.assertFalse(Sale.objects.exists())
        self.hammer.refresh_from_db()
        self.assertEqual(self.hammer.quantity, 20)

    def test_fully_discounted_cart_settles_at_zero(self):
        result = settle_immediate_sale(
            items=[self.cart_line(self.hammer, 1, discount="100", discount_type="percentage")],
            actor=self.cashier,
        )

        self.assertEqual(result.total_amount, Decimal("0.00"))
        self.assertEqual(result.change_given, Decimal("0.00"))
        self.assertEqual(result.sale.payment_status, "Paid")
        self.assertFalse(result.sale.payments.exists())
        self.hammer.refresh_from_db()
        self.assertEqual(self.hammer.quantity, 19)

    def test_zero_amount_paid_means_exact_total(self):
        result = settle_immediate_sale(
            items=[self.cart_line(self.hammer, 2)],
            amount_paid=Decimal("0"),
            actor=self.cashier,
        )

        self.assertEqual(result.sale.amount_paid, Decimal("30.00"))
        self.assertEqual(result.sale.payment_status, "Paid")
        self.assertEqual(result.change_given, Decimal("0.00"))

    def test_negative_amount_paid_is_rejected(self):
        with self.assertRaises(ValidationError):
            settle_immediate_sale(
                items=[self.cart_line(self.hammer, 1)],
                amount_paid=Decimal("-5.00"),
                actor=self.cashier,
            )

        self.assertFalse(Sale.objects.exists())

    def test_sale_without_staff_member_is_rejected(self):
        with self.assertRaises(ValidationError) as immediate:
            settle_immediate_sale(items=[self.cart_line(self.hammer, 1)], actor=None)
        with self.assertRaises(ValidationError):
            settle_credit_sale(customer_id=self.customer.id, items=[self.cart_line(self.hammer, 1)], actor=None)

        self.assertIn("actor", immediate.exception.detail)
        self.assertFalse(Sale.objects.exists())
        self.hammer.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertEqual(self.hammer.quantity, 20)
        self.assertEqual(self.customer.balance, Decimal("0.00"))

    def test_empty_cart_is_rejected(self):
        with self.assertRaises(ValidationError):
            settle_immediate_sale(items=[], actor=self.cashier)

    def test_credit_sale_adds_total_to_balance(self):
        result = settle_credit_sale(
            customer_id=self.customer.id,
            items=[self.cart_line(self.hammer, 1), self.cart_line(self.nails, 3)],
            actor=self.cashier,
        )

        sale = result.sale
        self.assertEqual(sale.payment_status, "Credit")
        self.assertEqual(sale.total_amount, Decimal("27.00"))
        self.assertFalse(sale.is_delivered)
        self.assertEqual(sale.order_status, "pending_delivery")
        self.assertFalse(sale.payments.exists())
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.balance, Decimal("27.00"))
        self.assertTrue(ActivityLog.objects.filter(action="sale.credit").exists())

    def test_credit_sale_requires_customer(self):
        with self.assertRaises(ValidationError):
            settle_credit_sale(customer_id=None, items=[self.cart_line(self.hammer, 1)], actor=self.cashier)

    def test_insufficient_stock_rolls_back_whole_sale(self):
        with self.assertRaises(InsufficientStock):
            settle_credit_sale(
                customer_id=self.customer.id,
                items=[self.cart_line(self.hammer, 2), self.cart_line(self.nails, 6)],
                actor=self.cashier,
            )

        self.assertFalse(Sale.objects.exists())
        self.assertFalse(SaleItem.objects.exists())
        self.hammer.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertEqual(self.hammer.quantity, 20)
        self.assertEqual(self.customer.balance, Decimal("0.00"))

    def test_unknown_product_is_not_found(self):
        line = self.cart_line(self.hammer, 1)
        line["product_id"] = "00000000-0000-0000-0000-000000000000"

        with self.assertRaises(NotFound):
            settle_immediate_sale(items=[line], actor=self.cashier)


class PaymentAllocationTests(SalesTestMixin, TestCase):
    def test_payment_settles_oldest_sale_first(self):
        newer = self.credit_sale(Decimal("50.00"), days_ago=1)
        older = self.credit_sale(Decimal("100.00"), days_ago=3)

        result = allocate_payment(
            customer_id=self.customer.id,
            sale_ids=[newer.id, older.id],
            amount=Decimal("120.00"),
            actor=self.cashier,
        )

        older.refresh_from_db()
        newer.refresh_from_db()
        self.assertEqual(older.payment_status, "Paid")
        self.assertEqual(newer.payment_status, "Partial")
        self.assertEqual(older.payments.get().amount, Decimal("100.00"))
        self.assertEqual(newer.payments.get().amount, Decimal("20.00"))
        self.assertEqual(result.applied_amount, Decimal("120.00"))
        self.assertEqual(result.change, Decimal("0.00"))
        self.assertEqual(result.remaining_balance, Decimal("30.00"))
        self.assertEqual(result.sales_touched, 2)

    def test_overpayment_is_returned_as_change(self):
        first = self.credit_sale(Decimal("100.00"), days_ago=2)
        second = self.credit_sale(Decimal("50.00"), days_ago=1)

        result = allocate_payment(
            customer_id=self.customer.id,
            sale_ids=[first.id, second.id],
            amount=Decimal("200.00"),
            actor=self.cashier,
        )

        self.assertEqual(result.applied_amount, Decimal("150.00"))
        self.assertEqual(result.change, Decimal("50.00"))
        self.assertEqual(result.remaining_balance, Decimal("0.00"))
        self.assertEqual(Payment.objects.filter(customer=self.customer).count(), 2)
        last_payment = Payment.objects.get(sale=second)
        self.assertEqual(last_payment.amount, Decimal("50.00"))
        self.assertEqual(last_payment.note, "Overpayment. Balance: Rs.50.00")

    def test_exact_payment_leaves_no_note(self):
        sale = self.credit_sale(Decimal("40.00"))

        allocate_payment(customer_id=self.customer.id, sale_ids=[sale.id], amount=Decimal("40.00"), actor=self.cashier)

        self.assertIsNone(Payment.objects.get(sale=sale).note)

    def test_balance_never_goes_negative(self):
        sale = self.credit_sale(Decimal("100.00"))
        Customer.objects.filter(pk=self.customer.pk).update(balance=Decimal("20.00"))

        result = allocate_payment(
            customer_id=self.customer.id, sale_ids=[sale.id], amount=Decimal("100.00"), actor=self.cashier
        )

        self.assertEqual(result.remaining_balance, Decimal("0.00"))
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.balance, Decimal("0.00"))

    def test_paying_settled_sales_again_only_returns_change(self):
        sale = self.credit_sale(Decimal("30.00"))
        allocate_payment(customer_id=self.customer.id, sale_ids=[sale.id], amount=Decimal("30.00"), actor=self.cashier)

        result = allocate_payment(
            customer_id=self.customer.id, sale_ids=[sale.id], amount=Decimal("30.00"), actor=self.cashier
        )

        self.assertEqual(result.applied_amount, Decimal("0.00"))
        self.assertEqual(result.change, Decimal("30.00"))
        self.assertEqual(result.payments, [])
        self.assertEqual(Payment.objects.filter(sale=sale).count(), 1)

    def test_sale_of_another_customer_is_not_found(self):
        mine = self.credit_sale(Decimal("30.00"))
        theirs = self.credit_sale(Decimal("30.00"), customer=self.other_customer)

        with self.assertRaises(NotFound):
            allocate_payment(
                customer_id=self.customer.id,
                sale_ids=[mine.id, theirs.id],
                amount=Decimal("60.00"),
                actor=self.cashier,
            )

        self.assertFalse(Payment.objects.exists())

    def test_failure_midway_rolls_back_every_write(self):
        first = self.credit_sale(Decimal("30.00"), days_ago=2)
        second = self.credit_sale(Decimal("30.00"), days_ago=1)

        with patch("sales.services.derive_payment_status", side_effect=[Sale.PaymentStatus.PAID, RuntimeError("boom")]):
            with self.assertRaises(RuntimeError):
                allocate_payment(
                    customer_id=self.customer.id,
                    sale_ids=[first.id, second.id],
                    amount=Decimal("60.00"),
                    actor=self.cashier,
                )

        first.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertFalse(Payment.objects.exists())
        self.assertEqual(first.payment_status, "Credit")
        self.assertEqual(self.customer.balance, Decimal("60.00"))

    def test_invalid_amount_and_empty_selection_are_rejected(self):
        sale = self.credit_sale(Decimal("30.00"))

        with self.assertRaises(ValidationError):
            allocate_payment(customer_id=self.customer.id, sale_ids=[sale.id], amount=Decimal("0"))
        with self.assertRaises(ValidationError):
            allocate_payment(customer_id=self.customer.id, sale_ids=[], amount=Decimal("10"))

    def test_balance_matches_outstanding_after_mixed_activity(self):
        first = self.credit_sale(Decimal("80.00"), days_ago=2)
        second = self.credit_sale(Decimal("45.00"), days_ago=1)
        allocate_payment(
            customer_id=self.customer.id, sale_ids=[first.id, second.id], amount=Decimal("100.00"), actor=self.cashier
        )

        self.customer.refresh_from_db()
        report = reconcile_customer_balance(self.customer)
        outstanding = customer_outstanding(self.customer.sales.prefetch_related("payments"))

        self.assertEqual(self.customer.balance, Decimal("25.00"))
        self.assertEqual(outstanding, Decimal("25.00"))
        self.assertEqual(report.drift, Decimal("0.00"))


class PosApiTests(SalesTestMixin, TestCase):
    def test_complete_sale_endpoint(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/pos/complete/",
            {"items": [self.cart_line(self.hammer, 2)], "amount_paid": "40.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["message"], "Sale completed! Total: Rs.30.00, Change: Rs.10.00")
        self.assertEqual(payload["payment_status"], "Paid")
        self.assertEqual(payload["sale"]["cashier"], "shop-cashier")
        self.assertEqual(len(payload["sale"]["items"]), 1)

    def test_credit_sale_endpoint(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/pos/credit/",
            {"customer_id": str(self.customer.id), "items": [self.cart_line(self.nails, 2)]},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["message"], "Added to book! Amount: Rs.8.00")
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.balance, Decimal("8.00"))

    def test_fully_discounted_sale_endpoint(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/pos/complete/",
            {"items": [self.cart_line(self.hammer, 1, discount="100", discount_type="percentage")]},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["total_amount"], "0.00")
        self.assertEqual(response.json()["payment_status"], "Paid")

    def test_credit_sale_without_customer_is_rejected(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/pos/credit/", {"items": [self.cart_line(self.nails, 1)]}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("customer_id", response.json()["errors"])

    def test_oversell_returns_conflict(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/pos/complete/",
            {"items": [self.cart_line(self.nails, 9)]},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "insufficient_stock")
        self.assertFalse(Sale.objects.exists())

    def test_unknown_customer_returns_not_found(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/pos/credit/",
            {"customer_id": "00000000-0000-0000-0000-000000000000", "items": [self.cart_line(self.nails, 1)]},
            format="json",
        )

        self.assertEqual(response.status_code, 404)
        self.nails.refresh_from_db()
        self.assertEqual(self.nails.quantity, 5)

    def test_payment_allocation_endpoint_reports_change(self):
        sale = self.credit_sale(Decimal("30.00"))
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/payments/allocate/",
            {"customer_id": str(self.customer.id), "sale_ids": [str(sale.id)], "amount": "50.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["message"], "Payment of Rs.30.00 recorded. Change returned: Rs.20.00")
        self.assertEqual(payload["change"], "20.00")
        self.assertEqual(payload["remaining_balance"], "0.00")
        self.assertEqual(len(payload["payments"]), 1)
        self.assertTrue(ActivityLog.objects.filter(action="payment.record").exists())

    def test_payment_allocation_rejects_non_positive_amount(self):
        sale = self.credit_sale(Decimal("30.00"))
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/payments/allocate/",
            {"customer_id": str(self.customer.id), "sale_ids": [str(sale.id)], "amount": "-5.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_pos_requires_authentication(self):
        response = self.client.post("/api/v1/pos/complete/", {"items": []}, format="json")

        self.assertEqual(response.status_code, 401)


class CustomerApiTests(SalesTestMixin, TestCase):
    def test_create_customer_logs_activity(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/customers/",
            {"name": "  Sunil Fernando ", "phone": "", "address": "Galle Road"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["message"], "Customer created successfully!")
        self.assertEqual(payload["customer"]["name"], "Sunil Fernando")
        self.assertIsNone(payload["customer"]["phone"])
        self.assertEqual(Decimal(payload["customer"]["balance"]), Decimal("0"))
        self.assertTrue(ActivityLog.objects.filter(action="customer.create").exists())

    def test_balance_cannot_be_set_through_api(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/customers/", {"name": "Sneaky", "balance": "-500"}, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertEqual(Customer.objects.get(name="Sneaky").balance, Decimal("0.00"))

    def test_search_matches_name_or_phone(self):
        self.client.force_authenticate(user=self.cashier)

        by_name = self.client.get("/api/v1/customers/", {"search": "kamala"}).json()
        by_phone = self.client.get("/api/v1/customers/", {"search": "0771"}).json()

        self.assertEqual([c["name"] for c in by_name["results"]], ["Kamala Silva"])
        self.assertEqual([c["name"] for c in by_phone["results"]], ["Nimal Perera"])

    def test_reconcile_is_owner_only_and_reports_drift(self):
        self.credit_sale(Decimal("30.00"))
        Customer.objects.filter(pk=self.customer.pk).update(balance=Decimal("45.00"))

        self.client.force_authenticate(user=self.cashier)
        denied = self.client.get(f"/api/v1/customers/{self.customer.id}/reconcile/")
        self.client.force_authenticate(user=self.owner)
        response = self.client.get(f"/api/v1/customers/{self.customer.id}/reconcile/")

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["expected_balance"], "30.00")
        self.assertEqual(payload["drift"], "15.00")
        self.assertFalse(payload["in_sync"])


class BooksAndOrdersApiTests(SalesTestMixin, TestCase):
    def test_books_lists_open_customer_sales_oldest_first(self):
        newer = self.credit_sale(Decimal("20.00"), days_ago=1)
        older = self.credit_sale(Decimal("30.00"), days_ago=4)
        paid = self.credit_sale(Decimal("10.00"), days_ago=2)
        allocate_payment(customer_id=self.customer.id, sale_ids=[paid.id], amount=Decimal("10.00"))
        settle_immediate_sale(items=[self.cart_line(self.nails, 1)], actor=self.cashier)
        self.client.force_authenticate(user=self.cashier)

        payload = self.client.get("/api/v1/books/").json()

        self.assertEqual([row["id"] for row in payload["results"]], [str(older.id), str(newer.id)])
        self.assertEqual(payload["results"][0]["due"], "30.00")

    def test_orders_filter_by_delivery_and_mark_delivered(self):
        pending = self.credit_sale(Decimal("20.00"))
        settle_immediate_sale(items=[self.cart_line(self.nails, 1)], actor=self.cashier)
        self.client.force_authenticate(user=self.cashier)

        listing = self.client.get("/api/v1/orders/", {"is_delivered": "false"}).json()
        self.assertEqual([row["id"] for row in listing["results"]], [str(pending.id)])

        response = self.client.post(f"/api/v1/orders/{pending.id}/deliver/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["message"], "Order marked as delivered!")
        pending.refresh_from_db()
        self.assertTrue(pending.is_delivered)
        self.assertEqual(pending.order_status, "completed")
        self.assertTrue(ActivityLog.objects.filter(action="order.delivered").exists())

        again = self.client.post(f"/api/v1/orders/{pending.id}/deliver/")
        self.assertEqual(again.json()["message"], "Order was already delivered.")
        self.assertEqual(ActivityLog.objects.filter(action="order.delivered").count(), 1)

    def test_orders_filter_by_payment_status_and_date(self):
        self.credit_sale(Decimal("20.00"), days_ago=10)
        recent = self.credit_sale(Decimal("25.00"))
        self.client.force_authenticate(user=self.cashier)
        today = timezone.localdate().isoformat()

        payload = self.client.get(
            "/api/v1/orders/", {"payment_status": "Credit", "start_date": today, "end_date": today}
        ).json()

        self.assertEqual([row["id"] for row in payload["results"]], [str(recent.id)])

    def test_orders_reject_malformed_dates(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/orders/", {"start_date": "2024-02-31"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("start_date", response.json()["errors"])


class DraftApiTests(SalesTestMixin, TestCase):
    def save_draft(self, items, customer=None):
        body = {"items": items}
        if customer is not None:
            body["customer"] = str(customer.id)
        return self.client.post("/api/v1/drafts/", body, format="json")

    def test_save_and_list_drafts(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.save_draft([self.cart_line(self.hammer, 1)], customer=self.customer)

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["draft"]["customer_name"], "Nimal Perera")
        draft = Draft.objects.get()
        self.assertEqual(draft.items[0]["product_id"], str(self.hammer.id))
        self.assertEqual(draft.items[0]["price"], "15.00")
        self.assertTrue(ActivityLog.objects.filter(action="draft.create").exists())

        listing = self.client.get("/api/v1/drafts/").json()
        self.assertEqual(listing["count"], 1)

    def test_draft_does_not_touch_stock(self):
        self.client.force_authenticate(user=self.cashier)

        self.save_draft([self.cart_line(self.nails, 5)])

        self.nails.refresh_from_db()
        self.assertEqual(self.nails.quantity, 5)

    def test_checkout_draft_as_credit_sale(self):
        self.client.force_authenticate(user=self.cashier)
        draft_id = self.save_draft([self.cart_line(self.hammer, 2)], customer=self.customer).json()["draft"]["id"]

        response = self.client.post(f"/api/v1/drafts/{draft_id}/checkout/", {"mode": "credit"}, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["payment_status"], "Credit")
        self.assertFalse(Draft.objects.exists())
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.balance, Decimal("30.00"))

    def test_checkout_draft_as_immediate_sale(self):
        self.client.force_authenticate(user=self.cashier)
        draft_id = self.save_draft([self.cart_line(self.hammer, 1)]).json()["draft"]["id"]

        response = self.client.post(
            f"/api/v1/drafts/{draft_id}/checkout/", {"mode": "immediate", "amount_paid": "20.00"}, format="json"
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["change_given"], "5.00")
        self.assertFalse(Draft.objects.exists())

    def test_failed_checkout_keeps_the_draft(self):
        self.client.force_authenticate(user=self.cashier)
        draft_id = self.save_draft([self.cart_line(self.nails, 9)]).json()["draft"]["id"]

        response = self.client.post(f"/api/v1/drafts/{draft_id}/checkout/", {}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertTrue(Draft.objects.filter(pk=draft_id).exists())

    def test_delete_draft(self):
        self.client.force_authenticate(user=self.cashier)
        draft_id = self.save_draft([self.cart_line(self.hammer, 1)]).json()["draft"]["id"]

        response = self.client.delete(f"/api/v1/drafts/{draft_id}/")

        self.assertEqual(response.status_code, 200)
        self.assertFalse(Draft.objects.exists())
        self.assertTrue(ActivityLog.objects.filter(action="draft.delete").exists())


class DashboardStatsTests(SalesTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.day = datetime(2024, 5, 10, 12, 0, tzinfo=dt_timezone.utc)

    def test_daily_totals(self):
        walk_in = settle_immediate_sale(items=[self.cart_line(self.hammer, 2)], actor=self.cashier).sale
        credit = self.credit_sale(Decimal("15.00"))
        Sale.objects.filter(pk__in=[walk_in.pk, credit.pk]).update(date=self.day)
        Sale.objects.create(user=self.cashier, total_amount=Decimal("999.00"), date=self.day - timedelta(days=1))
        expense = Expense.objects.create(user=self.owner, reason="Tea", amount=Decimal("5.00"))
        Expense.objects.filter(pk=expense.pk).update(created_at=self.day)
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/dashboard/stats/", {"date": "2024-05-10", "timezone": "UTC"})

        self.assertEqual(response.status_code, 200)
        stats = response.json()["stats"]
        self.assertEqual(stats["total_revenue"], "45.00")
        self.assertEqual(stats["total_cost"], "30.00")
        self.assertEqual(stats["total_profit"], "15.00")
        self.assertEqual(stats["total_expenses"], "5.00")
        self.assertEqual(stats["net_income"], "10.00")
        self.assertEqual(stats["sales_count"], 2)
        self.assertEqual(stats["credit_sales_count"], 1)
        self.assertEqual(stats["outstanding_credit"], "15.00")
        self.assertEqual(stats["display"]["total_revenue"], "Rs.45.00")

    def test_low_stock_products_are_listed(self):
        self.client.force_authenticate(user=self.cashier)
        Product.objects.filter(pk=self.nails.pk).update(quantity=1)

        stats = self.client.get("/api/v1/dashboard/stats/", {"date": "2024-05-10"}).json()["stats"]

        self.assertEqual([row["name"] for row in stats["low_stock"]], ["Nails"])

    def test_date_is_required_and_timezone_validated(self):
        self.client.force_authenticate(user=self.cashier)

        missing = self.client.get("/api/v1/dashboard/stats/")
        bad_tz = self.client.get("/api/v1/dashboard/stats/", {"date": "2024-05-10", "timezone": "Mars/Base"})

        self.assertEqual(missing.status_code, 400)
        self.assertEqual(bad_tz.status_code, 400)
