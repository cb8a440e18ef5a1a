from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from common.exceptions import InsufficientStock
from core.models import ActivityLog
from inventory.models import Category, InventoryLog, Product
from inventory.services import decrement_stock, inventory_stats
from sales.models import Sale, SaleItem


class InventoryTestMixin:
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.owner = self.user_model.objects.create_user(username="inv-owner", password="pass1234", role="owner")
        self.cashier = self.user_model.objects.create_user(username="inv-cashier", password="pass1234", role="cashier")
        self.tools = Category.objects.create(name="Hand Tools")
        self.paint = Category.objects.create(name="Paint")

    def make_product(self, name, category=None, **overrides):
        values = {
            "name": name,
            "category": category or self.tools,
            "unit": "pcs",
            "cost_price": Decimal("10.00"),
            "selling_price": Decimal("15.00"),
            "quantity": 20,
            "low_stock_threshold": 5,
        }
        values.update(overrides)
        return Product.objects.create(**values)


class CategoryAndUnitTests(InventoryTestMixin, TestCase):
    def test_only_owner_can_create_category(self):
        self.client.force_authenticate(user=self.cashier)
        denied = self.client.post("/api/v1/categories/", {"name": "Electrical"}, format="json")

        self.client.force_authenticate(user=self.owner)
        created = self.client.post("/api/v1/categories/", {"name": "Electrical"}, format="json")

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(created.status_code, 201)
        self.assertTrue(ActivityLog.objects.filter(action="category.create").exists())

    def test_duplicate_category_name_is_rejected(self):
        self.client.force_authenticate(user=self.owner)

        response = self.client.post("/api/v1/categories/", {"name": "hand tools"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Category already exists.")

    def test_staff_can_list_categories(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/categories/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["name"] for item in response.json()], ["Hand Tools", "Paint"])

    def test_cashier_can_add_unit(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post("/api/v1/units/", {"name": "box"}, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertTrue(ActivityLog.objects.filter(action="unit.create", actor=self.cashier).exists())


class ProductApiTests(InventoryTestMixin, TestCase):
    def test_create_product_logs_activity(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/products/",
            {
                "name": "Claw Hammer",
                "category": str(self.tools.id),
                "unit": "pcs",
                "cost_price": "800.00",
                "selling_price": "1200.00",
                "quantity": 12,
                "low_stock_threshold": 3,
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["product"]["category_name"], "Hand Tools")
        self.assertTrue(ActivityLog.objects.filter(action="product.create").exists())

    def test_negative_price_is_rejected(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/products/",
            {
                "name": "Broken",
                "category": str(self.tools.id),
                "unit": "pcs",
                "cost_price": "-1.00",
                "selling_price": "2.00",
                "quantity": 1,
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("cost_price", response.json()["errors"])

    def test_list_filters_and_sorting(self):
        self.make_product("Wrench")
        self.make_product("Anchor Bolt", quantity=2)
        self.make_product("Primer", category=self.paint)
        self.client.force_authenticate(user=self.cashier)

        alphabetic = self.client.get("/api/v1/products/", {"sort_by": "alphabetic"}).json()
        first_added = self.client.get("/api/v1/products/", {"sort_by": "first-added"}).json()
        by_category = self.client.get("/api/v1/products/", {"category": "Paint"}).json()
        low_stock = self.client.get("/api/v1/products/", {"low_stock_only": "true"}).json()
        search = self.client.get("/api/v1/products/", {"search": "wren"}).json()

        self.assertEqual([p["name"] for p in alphabetic["results"]], ["Anchor Bolt", "Primer", "Wrench"])
        self.assertEqual([p["name"] for p in first_added["results"]], ["Wrench", "Anchor Bolt", "Primer"])
        self.assertEqual([p["name"] for p in by_category["results"]], ["Primer"])
        self.assertEqual([p["name"] for p in low_stock["results"]], ["Anchor Bolt"])
        self.assertEqual([p["name"] for p in search["results"]], ["Wrench"])

    def test_limit_alias_caps_page_size(self):
        for index in range(3):
            self.make_product(f"Item {index}")
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/products/", {"limit": 2})

        payload = response.json()
        self.assertEqual(payload["count"], 3)
        self.assertEqual(len(payload["results"]), 2)

    def test_quantity_change_requires_reason(self):
        product = self.make_product("Spanner")
        self.client.force_authenticate(user=self.cashier)

        response = self.client.patch(f"/api/v1/products/{product.id}/", {"quantity": 25}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("reason", response.json()["errors"])
        product.refresh_from_db()
        self.assertEqual(product.quantity, 20)

    def test_quantity_change_with_reason_writes_inventory_log(self):
        product = self.make_product("Spanner")
        self.client.force_authenticate(user=self.cashier)

        response = self.client.patch(
            f"/api/v1/products/{product.id}/",
            {"quantity": 25, "reason": "Restock from supplier"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        log = InventoryLog.objects.get(product=product)
        self.assertEqual((log.quantity_before, log.quantity_after, log.quantity_change), (20, 25, 5))
        self.assertEqual(log.user, self.cashier)
        self.assertTrue(ActivityLog.objects.filter(action="product.update").exists())

        history = self.client.get(f"/api/v1/products/{product.id}/history/")
        self.assertEqual(history.json()[0]["reason"], "Restock from supplier")

    def test_price_only_update_needs_no_reason(self):
        product = self.make_product("Spanner")
        self.client.force_authenticate(user=self.cashier)

        response = self.client.patch(f"/api/v1/products/{product.id}/", {"selling_price": "18.50"}, format="json")

        self.assertEqual(response.status_code, 200)
        product.refresh_from_db()
        self.assertEqual(product.selling_price, Decimal("18.50"))
        self.assertFalse(InventoryLog.objects.exists())

    def test_delete_unreferenced_product(self):
        product = self.make_product("Obsolete")
        self.client.force_authenticate(user=self.cashier)

        response = self.client.delete(f"/api/v1/products/{product.id}/")

        self.assertEqual(response.status_code, 200)
        self.assertFalse(Product.objects.filter(id=product.id).exists())
        self.assertTrue(ActivityLog.objects.filter(action="product.delete").exists())

    def test_delete_product_referenced_by_sale_conflicts(self):
        product = self.make_product("Sold Item")
        sale = Sale.objects.create(user=self.cashier, total_amount=Decimal("15.00"))
        SaleItem.objects.create(
            sale=sale,
            product=product,
            quantity=1,
            price_snapshot=Decimal("15.00"),
            cost_price_snapshot=Decimal("10.00"),
            subtotal=Decimal("15.00"),
        )
        self.client.force_authenticate(user=self.cashier)

        response = self.client.delete(f"/api/v1/products/{product.id}/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "conflict")
        self.assertTrue(Product.objects.filter(id=product.id).exists())

    def test_stats_endpoint(self):
        self.make_product("A", quantity=10, cost_price=Decimal("2.00"), selling_price=Decimal("3.00"))
        self.make_product("B", quantity=1, cost_price=Decimal("5.00"), selling_price=Decimal("8.00"))
        self.client.force_authenticate(user=self.cashier)

        payload = self.client.get("/api/v1/products/stats/").json()

        self.assertEqual(payload["total_count"], 2)
        self.assertEqual(Decimal(str(payload["total_cost_value"])), Decimal("25.00"))
        self.assertEqual(Decimal(str(payload["total_selling_value"])), Decimal("38.00"))
        self.assertEqual(payload["low_stock_count"], 1)
        self.assertEqual(payload["total_cost_value_display"], "Rs.25.00")


class StockDecrementTests(InventoryTestMixin, TestCase):
    def test_decrement_takes_stock(self):
        product = self.make_product("Nails", quantity=5)

        decrement_stock(product.id, 3)

        product.refresh_from_db()
        self.assertEqual(product.quantity, 2)

    def test_decrement_refuses_oversell(self):
        product = self.make_product("Nails", quantity=2)

        with self.assertRaises(InsufficientStock):
            decrement_stock(product.id, 3)

        product.refresh_from_db()
        self.assertEqual(product.quantity, 2)

    @override_settings(POS_ALLOW_NEGATIVE_STOCK=True)
    def test_negative_stock_allowed_when_configured(self):
        product = self.make_product("Nails", quantity=2)

        decrement_stock(product.id, 3)

        product.refresh_from_db()
        self.assertEqual(product.quantity, -1)

    def test_inventory_stats_counts_low_stock(self):
        self.make_product("Low", quantity=4, low_stock_threshold=5)
        self.make_product("Exact", quantity=5, low_stock_threshold=5)

        stats = inventory_stats()

        self.assertEqual(stats["low_stock_count"], 1)
        self.assertEqual(stats["total_count"], 2)
