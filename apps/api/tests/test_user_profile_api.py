"""
Tests for /api/auth/me/ endpoint.

Tests:
- Profile fields and roles returned for the authenticated user
- Blank name handled correctly
- Unauthenticated requests rejected
"""
from django.test import TestCase
from rest_framework.test import APIClient
from apps.authz.models import User, Role, UserRole


class UserProfileAPITestCase(TestCase):
    """Test suite for /api/auth/me/ endpoint (CurrentUserView)."""

    def setUp(self):
        self.client = APIClient()

        self.doctor = User.objects.create_user(
            email='doctor@test.com',
            password='testpass123',
            name='Dr. Mwansa',
        )
        self.user_no_name = User.objects.create_user(
            email='noname@test.com',
            password='testpass123',
        )

        UserRole.objects.create(user=self.doctor, role=Role.objects.get(name='doctor'))
        UserRole.objects.create(user=self.doctor, role=Role.objects.get(name='admin'))

    def test_profile_includes_roles(self):
        self.client.force_authenticate(user=self.doctor)

        response = self.client.get('/api/auth/me/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['id'], self.doctor.id)
        self.assertEqual(response.data['email'], 'doctor@test.com')
        self.assertEqual(response.data['name'], 'Dr. Mwansa')
        self.assertEqual(response.data['roles'], ['admin', 'doctor'])

    def test_profile_without_name_or_roles(self):
        self.client.force_authenticate(user=self.user_no_name)

        response = self.client.get('/api/auth/me/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['name'], '')
        self.assertEqual(response.data['roles'], [])

    def test_no_password_in_response(self):
        self.client.force_authenticate(user=self.doctor)
        response = self.client.get('/api/auth/me/')
        self.assertNotIn('password', response.data)

    def test_unauthenticated_request(self):
        response = self.client.get('/api/auth/me/')
        self.assertEqual(response.status_code, 401)

    def test_token_login_flow(self):
        response = self.client.post(
            '/api/auth/token/',
            {'email': 'doctor@test.com', 'password': 'testpass123'},
            format='json',
        )
        self.assertEqual(response.status_code, 200)

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")
        response = self.client.get('/api/auth/me/')
        self.assertEqual(response.data['email'], 'doctor@test.com')
