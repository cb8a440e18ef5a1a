from rest_framework import serializers

from inventory.models import Category, InventoryLog, Product, Unit


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ["id", "name", "created_at"]
        read_only_fields = ["id", "created_at"]

    def validate_name(self, value):
        name = value.strip()
        if not name:
            raise serializers.ValidationError("Category name is required.")
        qs = Category.objects.filter(name__iexact=name)
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        if qs.exists():
            raise serializers.ValidationError("Category already exists.")
        return name


class UnitSerializer(serializers.ModelSerializer):
    class Meta:
        model = Unit
        fields = ["id", "name", "created_at"]
        read_only_fields = ["id", "created_at"]

    def validate_name(self, value):
        name = value.strip()
        if not name:
            raise serializers.ValidationError("Unit name is required.")
        if Unit.objects.filter(name__iexact=name).exists():
            raise serializers.ValidationError("Unit already exists.")
        return name


class ProductSerializer(serializers.ModelSerializer):
    category_name = serializers.CharField(source="category.name", read_only=True)
    is_low_stock = serializers.BooleanField(read_only=True)
    reason = serializers.CharField(write_only=True, required=False, allow_blank=True, max_length=255)

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "category",
            "category_name",
            "unit",
            "cost_price",
            "selling_price",
            "quantity",
            "low_stock_threshold",
            "is_low_stock",
            "reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_name(self, value):
        name = value.strip()
        if not name:
            raise serializers.ValidationError("Product name is required.")
        return name

    def validate_unit(self, value):
        unit = value.strip()
        if not unit:
            raise serializers.ValidationError("Unit is required.")
        return unit

    def validate_cost_price(self, value):
        if value < 0:
            raise serializers.ValidationError("Cost price cannot be negative.")
        return value

    def validate_selling_price(self, value):
        if value < 0:
            raise serializers.ValidationError("Selling price cannot be negative.")
        return value

    def validate_quantity(self, value):
        if value < 0:
            raise serializers.ValidationError("Quantity cannot be negative.")
        return value

    def validate(self, attrs):
        reason = (attrs.get("reason") or "").strip()
        if self.instance is not None and "quantity" in attrs and attrs["quantity"] != self.instance.quantity and not reason:
            raise serializers.ValidationError({"reason": "A reason is required when changing the stock quantity."})
        attrs["reason"] = reason
        return attrs

    def create(self, validated_data):
        validated_data.pop("reason", None)
        return super().create(validated_data)


class InventoryLogSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    username = serializers.CharField(source="user.username", read_only=True, default=None)

    class Meta:
        model = InventoryLog
        fields = [
            "id",
            "product",
            "product_name",
            "quantity_change",
            "quantity_before",
            "quantity_after",
            "reason",
            "user",
            "username",
            "created_at",
        ]
        read_only_fields = fields
