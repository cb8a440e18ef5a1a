from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from core.models import ActivityLog

User = get_user_model()


class UsernameTokenObtainPairSerializer(TokenObtainPairSerializer):
    default_error_messages = {
        "no_active_account": "Invalid credentials.",
    }

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["username"] = user.username
        token["role"] = getattr(user, "role", None)
        token["is_superuser"] = user.is_superuser
        return token

    def validate(self, attrs):
        attrs["username"] = (attrs.get("username") or "").strip()
        data = super().validate(attrs)
        data["user"] = {
            "id": str(self.user.id),
            "username": self.user.username,
            "role": self.user.role,
        }
        return data


class StaffSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ["id", "username", "role", "is_active", "date_joined"]
        read_only_fields = fields


class CashierCreateSerializer(serializers.ModelSerializer):
    username = serializers.CharField(min_length=3, max_length=150)
    password = serializers.CharField(write_only=True, min_length=6)

    class Meta:
        model = User
        fields = ["username", "password"]

    default_error_messages = {
        "username_taken": "Username already exists.",
    }

    def validate_username(self, value):
        username = value.strip()
        if User.objects.filter(username__iexact=username).exists():
            self.fail("username_taken")
        return username

    def create(self, validated_data):
        return User.objects.create_user(
            username=validated_data["username"],
            password=validated_data["password"],
            role=User.Role.CASHIER,
        )


class ActivityLogActorSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ["id", "username", "role"]


class ActivityLogSerializer(serializers.ModelSerializer):
    user = ActivityLogActorSerializer(source="actor", read_only=True)

    class Meta:
        model = ActivityLog
        fields = ["id", "action", "description", "metadata", "created_at", "user"]
        read_only_fields = fields
