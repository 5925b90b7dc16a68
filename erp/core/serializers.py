from rest_framework import serializers
from django.contrib.auth.password_validation import validate_password
from .models import User, AuditLog


class UserSerializer(serializers.ModelSerializer):
    display_name = serializers.ReadOnlyField()

    class Meta:
        model = User
        fields = ['id', 'username', 'display_name', 'email', 'first_name', 'last_name', 'phone', 'role',
                  'is_active', 'is_staff', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']


class CurrentUserSerializer(UserSerializer):
    """The signed-in user with what the stage execution screen may show them"""
    is_admin = serializers.ReadOnlyField()
    can_execute_stages = serializers.ReadOnlyField()
    can_access_costs = serializers.ReadOnlyField()

    class Meta(UserSerializer.Meta):
        fields = UserSerializer.Meta.fields + ['is_admin', 'can_execute_stages', 'can_access_costs']


class UserCreateSerializer(serializers.ModelSerializer):
    """Create an operator or manager account; operators default to the factory worker role"""
    password = serializers.CharField(write_only=True, validators=[validate_password])
    password_confirm = serializers.CharField(write_only=True)

    class Meta:
        model = User
        fields = ['username', 'email', 'password', 'password_confirm', 'first_name', 'last_name', 'phone', 'role']

    def validate(self, attrs):
        if attrs['password'] != attrs['password_confirm']:
            raise serializers.ValidationError({"password": "Passwords don't match"})
        return attrs

    def create(self, validated_data):
        validated_data.pop('password_confirm')
        password = validated_data.pop('password')
        user = User(**validated_data, is_active=True)
        user.set_password(password)
        user.save()
        return user


class AuditLogSerializer(serializers.ModelSerializer):
    user = serializers.SlugRelatedField(slug_field='username', read_only=True)

    class Meta:
        model = AuditLog
        fields = ['id', 'user', 'action', 'model_name', 'object_id', 'object_name',
                  'object_reference', 'changes', 'ip_address', 'created_at']
