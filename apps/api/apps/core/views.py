"""
Core views - authenticated user profile.
"""
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.authz.permissions import get_user_roles
from .serializers import UserProfileSerializer


class CurrentUserView(APIView):
    """
    Current authenticated user profile endpoint.

    GET /api/auth/me/ - Returns profile of the authenticated user.

    Dashboards call this after JWT login and use `roles` to decide which
    sessions and actions to show. The backend remains the authorization
    authority.

    Response format:
    {
        "id": 7,
        "email": "user@example.com",
        "name": "Dr. Example",
        "is_active": true,
        "is_staff": false,
        "roles": ["doctor"]
    }
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        user = request.user

        profile_data = {
            'id': user.id,
            'email': user.email,
            'name': user.name,
            'is_active': user.is_active,
            'is_staff': user.is_staff,
            'roles': sorted(get_user_roles(user)),
        }

        serializer = UserProfileSerializer(profile_data)
        return Response(serializer.data, status=status.HTTP_200_OK)
