from rest_framework import serializers

from expenses.models import Expense


class ExpenseSerializer(serializers.ModelSerializer):
    user = serializers.SerializerMethodField()

    class Meta:
        model = Expense
        fields = ["id", "reason", "amount", "created_at", "user"]
        read_only_fields = ["id", "created_at", "user"]

    def get_user(self, obj):
        return {"id": str(obj.user_id), "username": obj.user.username, "role": obj.user.role}

    def validate_reason(self, value):
        reason = value.strip()
        if not reason:
            raise serializers.ValidationError("Reason is required.")
        return reason

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Amount must be greater than zero.")
        return value
