"""
Core serializers - authenticated user profile.
"""
from rest_framework import serializers


class UserProfileSerializer(serializers.Serializer):
    """Profile of the authenticated user, with role names."""
    id = serializers.IntegerField()
    email = serializers.EmailField()
    name = serializers.CharField(allow_blank=True, allow_null=True)
    is_active = serializers.BooleanField()
    is_staff = serializers.BooleanField()
    roles = serializers.ListField(child=serializers.CharField())
