import uuid

from django.db import models
from django.utils import timezone

from core.models import User
from inventory.models import Product


class Customer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=64, null=True, blank=True)
    address = models.CharField(max_length=255, null=True, blank=True)
    balance = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["name"], name="customer_name_idx"),
            models.Index(fields=["phone"], name="customer_phone_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(balance__gte=0), name="customer_balance_non_negative"),
        ]

    def __str__(self):
        return self.name


class Sale(models.Model):
    class PaymentStatus(models.TextChoices):
        PAID = "Paid", "Paid"
        CREDIT = "Credit", "Credit"
        PARTIAL = "Partial", "Partial"

    class OrderStatus(models.TextChoices):
        COMPLETED = "completed", "Completed"
        PENDING_DELIVERY = "pending_delivery", "Pending delivery"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    date = models.DateTimeField(default=timezone.now)
    user = models.ForeignKey(User, on_delete=models.PROTECT, related_name="sales")
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, null=True, blank=True, related_name="sales")
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PAID)
    order_status = models.CharField(max_length=32, choices=OrderStatus.choices, default=OrderStatus.COMPLETED)
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    change_given = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    is_delivered = models.BooleanField(default=True)

    class Meta:
        indexes = [
            models.Index(fields=["date"], name="sale_date_idx"),
            models.Index(fields=["customer", "payment_status"], name="sale_customer_status_idx"),
            models.Index(fields=["order_status", "date"], name="sale_order_status_idx"),
        ]

    def __str__(self):
        return f"Sale {self.id}"


class SaleItem(models.Model):
    class DiscountType(models.TextChoices):
        AMOUNT = "amount", "Amount"
        PERCENTAGE = "percentage", "Percentage"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sale = models.ForeignKey(Sale, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="sale_items")
    quantity = models.PositiveIntegerField()
    price_snapshot = models.DecimalField(max_digits=12, decimal_places=2)
    cost_price_snapshot = models.DecimalField(max_digits=12, decimal_places=2)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount_type = models.CharField(max_length=16, choices=DiscountType.choices, default=DiscountType.AMOUNT)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        indexes = [models.Index(fields=["sale"], name="saleitem_sale_idx")]


class Payment(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sale = models.ForeignKey(Sale, on_delete=models.PROTECT, related_name="payments")
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, null=True, blank=True, related_name="payments")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    date = models.DateTimeField(default=timezone.now)
    note = models.CharField(max_length=255, null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["sale", "date"], name="payment_sale_date_idx"),
            models.Index(fields=["customer", "date"], name="payment_customer_date_idx"),
        ]


class Draft(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="drafts")
    customer = models.ForeignKey(Customer, on_delete=models.SET_NULL, null=True, blank=True, related_name="drafts")
    items = models.JSONField(default=list)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
