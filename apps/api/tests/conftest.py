"""
Global test fixtures for pytest.

Provides reusable fixtures for sync and workflow testing:
- Authenticated API clients by role
- Users, clinical sessions
- An in-memory CouchDB change feed
"""
import pytest
from rest_framework.test import APIClient
from django.utils import timezone

from apps.authz.models import User, Role, UserRole, RoleChoices
from apps.clinical.models import ClinicalSession, WorkflowState
from apps.sync.couchdb import ChangeBatch, ChangeRecord
from apps.sync.cursor import CursorStore


# ============================================================================
# Users and API Clients
# ============================================================================

def make_user(email, role=None, **extra):
    user = User.objects.create_user(email=email, password='testpass123', is_active=True, **extra)
    if role:
        role_obj, _ = Role.objects.get_or_create(name=role)
        UserRole.objects.create(user=user, role=role_obj)
    return user


def client_for(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def admin_user(db):
    return make_user('admin@test.com', RoleChoices.ADMIN, is_staff=True)


@pytest.fixture
def doctor_user(db):
    return make_user('doctor@test.com', RoleChoices.DOCTOR, name='Dr. Test', external_id='mobile-doctor-1')


@pytest.fixture
def nurse_user(db):
    return make_user('nurse@test.com', RoleChoices.NURSE, external_id='mobile-nurse-1')


@pytest.fixture
def chw_user(db):
    return make_user('chw@test.com', RoleChoices.CHW)


@pytest.fixture
def admin_client(admin_user):
    """
    Authenticated API client with Admin role.
    Admin can read the sync status and move sessions.
    """
    return client_for(admin_user)


@pytest.fixture
def doctor_client(doctor_user):
    """Authenticated API client with Doctor role (read + transition)."""
    return client_for(doctor_user)


@pytest.fixture
def chw_client(chw_user):
    """
    Authenticated API client with Community Health Worker role.
    CHW can read sessions but not transition them (should receive 403).
    """
    return client_for(chw_user)


@pytest.fixture
def norole_client(db):
    """Authenticated user without any role (should receive 403 everywhere)."""
    return client_for(make_user('norole@test.com'))


# ============================================================================
# Clinical records
# ============================================================================

@pytest.fixture
def make_session(db):
    """Factory for mirrored clinical sessions in a given workflow state."""
    counter = {'n': 0}

    def factory(workflow_state=WorkflowState.NEW, couch_id=None, **extra):
        counter['n'] += 1
        return ClinicalSession.objects.create(
            couch_id=couch_id or f"session:test-{counter['n']}",
            couch_rev='1-abc',
            couch_updated_at=timezone.now(),
            patient_cpt='AB12',
            workflow_state=workflow_state,
            **extra
        )

    return factory


@pytest.fixture
def session(make_session):
    return make_session()


# ============================================================================
# Change feed
# ============================================================================

class FakeCouchDb:
    """
    In-memory stand-in for CouchDbClient.fetch_changes().

    Changes are appended with numeric sequences; `since` and `limit`
    behave like the real feed. Set `fail_with` to make the next fetch
    raise.
    """

    database = 'healthbridge-test'

    def __init__(self):
        self.changes = []
        self.fail_with = None
        self.fetch_calls = []
        self.closed = False

    def add(self, doc, deleted=False):
        seq = str(len(self.changes) + 1)
        doc_id = doc['_id']
        self.changes.append(ChangeRecord(
            doc_id=doc_id,
            seq=seq,
            rev=doc.get('_rev'),
            doc=None if deleted else doc,
            deleted=deleted,
        ))
        return seq

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self.closed = True

    def delete(self, doc_id, rev='9-dead'):
        return self.add({'_id': doc_id, '_rev': rev}, deleted=True)

    def fetch_changes(self, since='0', limit=100):
        self.fetch_calls.append((since, limit))
        if self.fail_with is not None:
            error, self.fail_with = self.fail_with, None
            raise error

        start = int(since)
        page = self.changes[start:start + limit]
        last_seq = page[-1].seq if page else str(since)
        pending = len(self.changes) - start - len(page)
        return ChangeBatch(changes=page, last_seq=last_seq, pending=pending, has_more=pending > 0)


@pytest.fixture
def couch():
    return FakeCouchDb()


@pytest.fixture
def cursor_store(db):
    return CursorStore(name='test_cursor')


# ============================================================================
# Documents
# ============================================================================

@pytest.fixture
def session_doc():
    """Factory for clinicalSession documents."""
    def factory(doc_id='session:s1', rev='1-a', updated_at='2026-03-01T10:00:00Z', **fields):
        doc = {
            '_id': doc_id,
            '_rev': rev,
            'type': 'clinicalSession',
            'id': doc_id.split(':', 1)[-1],
            'patientCpt': 'AB12',
            'stage': 'registration',
            'status': 'open',
            'triage': 'green',
            'createdAt': '2026-03-01T09:00:00Z',
            'updatedAt': updated_at,
        }
        doc.update(fields)
        return doc
    return factory


@pytest.fixture
def patient_doc():
    """Factory for plaintext clinicalPatient documents."""
    def factory(doc_id='patient:CD34', rev='1-a', updated_at='2026-03-01T10:00:00Z', **patient_fields):
        patient = {
            'cpt': doc_id.split(':', 1)[-1],
            'dateOfBirth': '2024-01-15',
            'gender': 'female',
            'weightKg': 9.5,
            'phone': '+260971234567',
            'visitCount': 2,
            'updatedAt': updated_at,
        }
        patient.update(patient_fields)
        return {
            '_id': doc_id,
            '_rev': rev,
            'type': 'clinicalPatient',
            'patient': patient,
        }
    return factory
