from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.core.management import call_command
from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from common.audit import AUDIT_FAILURE_CACHE_KEY, audit_failure_count, record_activity
from core.models import ActivityLog
from inventory.models import Category, Product
from sales.models import Customer


class TokenAuthTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.cashier = self.user_model.objects.create_user(
            username="till-one",
            password="pass1234",
            role="cashier",
        )

    def test_login_returns_tokens_and_role(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "till-one", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertIn("access", payload)
        self.assertIn("refresh", payload)
        self.assertEqual(payload["user"]["role"], "cashier")

    def test_inactive_user_cannot_log_in(self):
        self.cashier.is_active = False
        self.cashier.save(update_fields=["is_active"])

        response = self.client.post(
            "/api/v1/token/",
            {"username": "till-one", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertFalse(payload["success"])
        self.assertEqual(payload["code"], "authentication_failed")

    def test_unauthenticated_request_uses_error_envelope(self):
        response = self.client.get("/api/v1/products/")

        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["code", "errors", "message", "status", "success"])
        self.assertEqual(payload["code"], "not_authenticated")
        self.assertEqual(payload["status"], 401)


class StaffManagementTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.owner = self.user_model.objects.create_user(username="owner", password="pass1234", role="owner")
        self.cashier = self.user_model.objects.create_user(username="cashier-a", password="pass1234", role="cashier")

    def test_owner_creates_cashier_and_action_is_logged(self):
        self.client.force_authenticate(user=self.owner)

        response = self.client.post(
            "/api/v1/staff/",
            {"username": "new-cashier", "password": "secret1"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        created = self.user_model.objects.get(username="new-cashier")
        self.assertEqual(created.role, "cashier")
        self.assertTrue(created.check_password("secret1"))
        self.assertTrue(ActivityLog.objects.filter(action="staff.create", actor=self.owner).exists())

    def test_duplicate_username_is_rejected_case_insensitively(self):
        self.client.force_authenticate(user=self.owner)

        response = self.client.post(
            "/api/v1/staff/",
            {"username": "CASHIER-A", "password": "secret1"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_short_credentials_are_rejected(self):
        self.client.force_authenticate(user=self.owner)

        response = self.client.post("/api/v1/staff/", {"username": "ab", "password": "123"}, format="json")

        self.assertEqual(response.status_code, 400)
        errors = response.json()["errors"]
        self.assertIn("username", errors)
        self.assertIn("password", errors)

    def test_cashier_cannot_manage_staff_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.cashier)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post(
                "/api/v1/staff/",
                {"username": "sneaky", "password": "secret1"},
                format="json",
            )

        self.assertEqual(response.status_code, 403)
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_list_contains_only_cashiers(self):
        self.client.force_authenticate(user=self.owner)

        response = self.client.get("/api/v1/staff/")

        self.assertEqual(response.status_code, 200)
        usernames = {item["username"] for item in response.json()["results"]}
        self.assertEqual(usernames, {"cashier-a"})

    def test_toggle_active_flips_status(self):
        self.client.force_authenticate(user=self.owner)

        response = self.client.post(f"/api/v1/staff/{self.cashier.id}/toggle-active/")

        self.assertEqual(response.status_code, 200)
        self.cashier.refresh_from_db()
        self.assertFalse(self.cashier.is_active)
        self.assertTrue(ActivityLog.objects.filter(action="staff.deactivate").exists())

        self.client.post(f"/api/v1/staff/{self.cashier.id}/toggle-active/")
        self.cashier.refresh_from_db()
        self.assertTrue(self.cashier.is_active)
        self.assertTrue(ActivityLog.objects.filter(action="staff.activate").exists())

    def test_owner_cannot_deactivate_themselves(self):
        self.client.force_authenticate(user=self.owner)

        response = self.client.post(f"/api/v1/staff/{self.owner.id}/toggle-active/")

        self.assertEqual(response.status_code, 400)
        self.owner.refresh_from_db()
        self.assertTrue(self.owner.is_active)


class ActivityLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.owner = self.user_model.objects.create_user(username="log-owner", password="pass1234", role="owner")
        self.cashier = self.user_model.objects.create_user(username="log-cashier", password="pass1234", role="cashier")
        cache.delete(AUDIT_FAILURE_CACHE_KEY)

    def test_owner_reads_newest_first_with_cursor_pages(self):
        record_activity(actor=self.cashier, action="customer.create", description="first")
        record_activity(actor=self.cashier, action="expense.create", description="second")
        self.client.force_authenticate(user=self.owner)

        response = self.client.get("/api/v1/activity-logs/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["next", "previous", "results"])
        self.assertEqual([item["description"] for item in payload["results"]], ["second", "first"])
        self.assertEqual(payload["results"][0]["user"]["username"], "log-cashier")

    def test_filter_by_action(self):
        record_activity(actor=self.cashier, action="customer.create", description="customer")
        record_activity(actor=self.cashier, action="expense.create", description="expense")
        self.client.force_authenticate(user=self.owner)

        response = self.client.get("/api/v1/activity-logs/", {"action": "expense.create"})

        self.assertEqual([item["description"] for item in response.json()["results"]], ["expense"])

    def test_filter_by_actor_and_day(self):
        record_activity(actor=self.cashier, action="customer.create", description="by cashier")
        record_activity(actor=self.owner, action="unit.create", description="by owner")
        self.client.force_authenticate(user=self.owner)
        today = timezone.localdate().isoformat()

        response = self.client.get(
            "/api/v1/activity-logs/",
            {"actor_id": str(self.cashier.id), "start_date": today, "end_date": today},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["description"] for item in response.json()["results"]], ["by cashier"])

    def test_malformed_filters_are_rejected(self):
        self.client.force_authenticate(user=self.owner)

        bad_actor = self.client.get("/api/v1/activity-logs/", {"actor_id": "not-a-uuid"})
        bad_date = self.client.get("/api/v1/activity-logs/", {"start_date": "2024-02-31"})

        self.assertEqual(bad_actor.status_code, 400)
        self.assertIn("actor_id", bad_actor.json()["errors"])
        self.assertEqual(bad_date.status_code, 400)
        self.assertIn("start_date", bad_date.json()["errors"])

    def test_cashier_cannot_read_logs(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/activity-logs/")

        self.assertEqual(response.status_code, 403)

    def test_logs_are_read_only(self):
        log = record_activity(actor=self.owner, action="unit.create", description="unit")
        self.client.force_authenticate(user=self.owner)

        post_res = self.client.post("/api/v1/activity-logs/", {"action": "x"}, format="json")
        delete_res = self.client.delete(f"/api/v1/activity-logs/{log.id}/")

        self.assertEqual(post_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_recorder_swallows_and_counts_failures(self):
        with patch.object(ActivityLog.objects, "create", side_effect=DatabaseError("disk full")):
            with self.assertLogs("audit", level="ERROR") as logs:
                result = record_activity(actor=self.owner, action="sale.complete", description="sale")

        self.assertIsNone(result)
        self.assertEqual(audit_failure_count(), 1)
        self.assertTrue(any("activity_log_write_failed" in entry for entry in logs.output))

    def test_anonymous_actor_is_stored_as_null(self):
        log = record_activity(actor=None, action="payment.record", description="system", metadata={"amount": Decimal("5.00")})

        self.assertIsNone(log.actor)
        self.assertEqual(log.metadata, {"amount": "5.00"})


class HealthCheckTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        cache.delete(AUDIT_FAILURE_CACHE_KEY)

    def test_healthz_reports_audit_failures(self):
        cache.set(AUDIT_FAILURE_CACHE_KEY, 3, timeout=None)

        response = self.client.get("/api/v1/healthz/", HTTP_X_REQUEST_ID="req-42")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["audit_failures"], 3)
        self.assertEqual(payload["request_id"], "req-42")
        self.assertEqual(response["X-Request-ID"], "req-42")

    def test_readyz_checks_database(self):
        response = self.client.get("/api/v1/readyz/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ready")


class ManagementCommandTests(TestCase):
    def test_seed_demo_data_is_idempotent(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        owner = get_user_model().objects.get(username="admin")
        self.assertEqual(owner.role, "owner")
        self.assertTrue(owner.check_password("admin123"))
        self.assertEqual(Category.objects.count(), 10)
        self.assertEqual(Product.objects.count(), 40)

    def test_reconcile_balances_reports_and_fixes_drift(self):
        customer = Customer.objects.create(name="Drifted", balance=Decimal("150.00"))

        out = StringIO()
        call_command("reconcile_balances", stdout=out)
        self.assertIn("Drifted", out.getvalue())
        customer.refresh_from_db()
        self.assertEqual(customer.balance, Decimal("150.00"))

        call_command("reconcile_balances", "--fix", stdout=StringIO())
        customer.refresh_from_db()
        self.assertEqual(customer.balance, Decimal("0.00"))
