from rest_framework import serializers

from common.utils import to_json_compatible
from sales.ledger import display_due, total_paid
from sales.models import Customer, Draft, Payment, Sale, SaleItem


class CustomerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = ["id", "name", "phone", "address", "balance", "created_at", "updated_at"]
        read_only_fields = ["id", "balance", "created_at", "updated_at"]

    def validate_name(self, value):
        name = value.strip()
        if not name:
            raise serializers.ValidationError("Customer name is required.")
        return name

    def validate(self, attrs):
        for field_name in ("phone", "address"):
            if field_name in attrs:
                attrs[field_name] = (attrs[field_name] or "").strip() or None
        return attrs


class CartItemSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    product_name = serializers.CharField(required=False, allow_blank=True)
    quantity = serializers.IntegerField(min_value=1)
    price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False, default=0)
    discount_type = serializers.ChoiceField(choices=SaleItem.DiscountType.choices, required=False, default=SaleItem.DiscountType.AMOUNT)
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False, allow_null=True)

    def validate(self, attrs):
        if attrs.get("discount_type") == SaleItem.DiscountType.PERCENTAGE and attrs.get("discount", 0) > 100:
            raise serializers.ValidationError({"discount": "Percentage discount cannot exceed 100."})
        return attrs


class ImmediateSaleSerializer(serializers.Serializer):
    customer_id = serializers.UUIDField(required=False, allow_null=True)
    items = CartItemSerializer(many=True)
    amount_paid = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    is_delivered = serializers.BooleanField(required=False, default=True)


class CreditSaleSerializer(serializers.Serializer):
    customer_id = serializers.UUIDField()
    items = CartItemSerializer(many=True)
    is_delivered = serializers.BooleanField(required=False, default=False)


class PaymentAllocationSerializer(serializers.Serializer):
    customer_id = serializers.UUIDField()
    sale_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Payment amount must be greater than zero.")
        return value


class SaleItemSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    unit = serializers.CharField(source="product.unit", read_only=True)

    class Meta:
        model = SaleItem
        fields = [
            "id",
            "product",
            "product_name",
            "unit",
            "quantity",
            "price_snapshot",
            "cost_price_snapshot",
            "discount",
            "discount_type",
            "subtotal",
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = ["id", "sale", "customer", "amount", "date", "note"]
        read_only_fields = fields


class SaleSerializer(serializers.ModelSerializer):
    items = SaleItemSerializer(many=True, read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True, default=None)
    customer_phone = serializers.CharField(source="customer.phone", read_only=True, default=None)
    cashier = serializers.CharField(source="user.username", read_only=True)
    paid_total = serializers.SerializerMethodField()
    due = serializers.SerializerMethodField()

    class Meta:
        model = Sale
        fields = [
            "id",
            "date",
            "cashier",
            "customer",
            "customer_name",
            "customer_phone",
            "total_amount",
            "payment_status",
            "order_status",
            "amount_paid",
            "change_given",
            "is_delivered",
            "paid_total",
            "due",
            "items",
            "payments",
        ]
        read_only_fields = fields

    def get_paid_total(self, obj):
        return str(total_paid(obj.payments.all()))

    def get_due(self, obj):
        return str(display_due(obj.total_amount, obj.payments.all()))


class DraftSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True, default=None)
    cashier = serializers.CharField(source="user.username", read_only=True)
    items = CartItemSerializer(many=True)

    class Meta:
        model = Draft
        fields = ["id", "cashier", "customer", "customer_name", "items", "created_at"]
        read_only_fields = ["id", "cashier", "customer_name", "created_at"]

    def create(self, validated_data):
        validated_data["items"] = to_json_compatible([dict(item) for item in validated_data.get("items", [])])
        return Draft.objects.create(**validated_data)


class DraftCheckoutSerializer(serializers.Serializer):
    class Mode:
        IMMEDIATE = "immediate"
        CREDIT = "credit"

    mode = serializers.ChoiceField(choices=[Mode.IMMEDIATE, Mode.CREDIT], default=Mode.IMMEDIATE)
    amount_paid = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    is_delivered = serializers.BooleanField(required=False, allow_null=True, default=None)
