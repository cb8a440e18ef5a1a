from datetime import datetime, timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import ActivityLog
from expenses.models import Expense


class ExpenseApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.cashier = self.user_model.objects.create_user(username="exp-cashier", password="pass1234", role="cashier")
        self.client.force_authenticate(user=self.cashier)

    def backdate(self, expense, moment):
        Expense.objects.filter(pk=expense.pk).update(created_at=moment)

    def test_record_expense_logs_activity(self):
        response = self.client.post("/api/v1/expenses/", {"reason": " Delivery fuel ", "amount": "1250.00"}, format="json")

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["message"], "Expense of Rs.1,250.00 recorded.")
        self.assertEqual(payload["expense"]["reason"], "Delivery fuel")
        self.assertEqual(payload["expense"]["user"]["username"], "exp-cashier")
        log = ActivityLog.objects.get(action="expense.create")
        self.assertEqual(log.actor, self.cashier)
        self.assertEqual(log.metadata["amount"], "1250.00")

    def test_amount_must_be_positive(self):
        zero = self.client.post("/api/v1/expenses/", {"reason": "Nothing", "amount": "0"}, format="json")
        negative = self.client.post("/api/v1/expenses/", {"reason": "Refund", "amount": "-10"}, format="json")

        self.assertEqual(zero.status_code, 400)
        self.assertEqual(negative.status_code, 400)
        self.assertIn("amount", zero.json()["errors"])
        self.assertFalse(Expense.objects.exists())

    def test_reason_is_required(self):
        response = self.client.post("/api/v1/expenses/", {"reason": "   ", "amount": "10"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("reason", response.json()["errors"])

    def test_list_filters_by_date_newest_first(self):
        tz = timezone.get_current_timezone()
        old = Expense.objects.create(user=self.cashier, reason="Rent", amount=Decimal("500.00"))
        first = Expense.objects.create(user=self.cashier, reason="Tea", amount=Decimal("50.00"))
        second = Expense.objects.create(user=self.cashier, reason="Lunch", amount=Decimal("80.00"))
        self.backdate(old, datetime(2024, 3, 1, 9, 0, tzinfo=tz))
        self.backdate(first, datetime(2024, 3, 5, 9, 0, tzinfo=tz))
        self.backdate(second, datetime(2024, 3, 5, 13, 0, tzinfo=tz))

        response = self.client.get("/api/v1/expenses/", {"start_date": "2024-03-05", "end_date": "2024-03-05"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["reason"] for row in response.json()["results"]], ["Lunch", "Tea"])

    def test_malformed_date_is_rejected(self):
        response = self.client.get("/api/v1/expenses/", {"start_date": "05/03/2024"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("start_date", response.json()["errors"])

    def test_total_sums_every_expense(self):
        Expense.objects.create(user=self.cashier, reason="Tea", amount=Decimal("50.00"))
        older = Expense.objects.create(user=self.cashier, reason="Rent", amount=Decimal("1000.25"))
        self.backdate(older, timezone.now() - timedelta(days=40))

        response = self.client.get("/api/v1/expenses/total/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"total": "1050.25", "display": "Rs.1,050.25"})

    def test_requires_authentication(self):
        self.client.force_authenticate(user=None)

        response = self.client.get("/api/v1/expenses/")

        self.assertEqual(response.status_code, 401)
