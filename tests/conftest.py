import os
from datetime import timedelta

os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key')
os.environ.setdefault('BCRYPT_ROUNDS', '4')
os.environ.setdefault('PAYMENT_KEY_SECRET', 'test-payment-secret')
os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from backend.auth.jwt_handler import create_access_token  # noqa: E402
from backend.auth.passwords import hash_password  # noqa: E402
from backend.core.clock import utcnow  # noqa: E402
from backend.database import StoreManager  # noqa: E402
from backend.main import create_app  # noqa: E402
from backend.models.course import Course  # noqa: E402
from backend.models.live_class import LiveClass  # noqa: E402
from backend.models.mentor import Mentor  # noqa: E402
from backend.models.school import School  # noqa: E402
from backend.models.user import User  # noqa: E402

TEST_PASSWORD = 'secret123'


@pytest.fixture
def store():
    manager = StoreManager('sqlite:///:memory:')
    manager.ensure_schema()
    try:
        yield manager
    finally:
        manager.dispose()


@pytest.fixture
def db(store):
    session = store.session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def app(store):
    return create_app(store)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def persist(store):
    """Save a new record in its own session and hand back the detached, loaded copy."""

    def _persist(record):
        session = store.session()
        try:
            session.add(record)
            session.commit()
            session.refresh(record)
        finally:
            session.close()
        return record

    return _persist


@pytest.fixture
def make_user(persist):
    counter = {'value': 0}

    def _make_user(**overrides):
        counter['value'] += 1
        fields = {
            'first_name': 'Student',
            'last_name': f'Number{counter["value"]}',
            'email': f'student{counter["value"]}@example.com',
            'hashed_password': hash_password(TEST_PASSWORD),
            'contact_number': '5550000000',
            'role': 'student',
        }
        fields.update(overrides)
        return persist(User(**fields))

    return _make_user


@pytest.fixture
def make_mentor(persist):
    counter = {'value': 0}

    def _make_mentor(**overrides):
        counter['value'] += 1
        fields = {
            'first_name': 'Mentor',
            'last_name': f'Number{counter["value"]}',
            'email': f'mentor{counter["value"]}@example.com',
            'hashed_password': hash_password(TEST_PASSWORD),
            'contact_number': '5551111111',
            'status': 'active',
            'skills': [],
            'languages': [],
        }
        fields.update(overrides)
        return persist(Mentor(**fields))

    return _make_mentor


@pytest.fixture
def make_school(persist):
    counter = {'value': 0}

    def _make_school(**overrides):
        counter['value'] += 1
        fields = {
            'organization_name': f'School {counter["value"]}',
            'organization_email': f'school{counter["value"]}@example.org',
            'hashed_password': hash_password(TEST_PASSWORD),
            'head_name': 'Head Teacher',
            'head_email': f'head{counter["value"]}@example.org',
            'head_contact_number': '5552222222',
            'address': {},
        }
        fields.update(overrides)
        return persist(School(**fields))

    return _make_school


@pytest.fixture
def make_course(persist):
    def _make_course(mentor, **overrides):
        fields = {
            'title': 'Intro to Algebra',
            'description': 'Numbers and letters.',
            'category': 'math',
            'course_for': 'elementary',
            'is_premium': False,
            'price': 0.0,
            'objectives': [],
            'created_by': mentor.id,
        }
        fields.update(overrides)
        return persist(Course(**fields))

    return _make_course


@pytest.fixture
def make_class(persist):
    def _make_class(mentor, **overrides):
        start = utcnow() + timedelta(days=1)
        fields = {
            'title': 'Live Algebra Session',
            'mentor_id': mentor.id,
            'start_time': start,
            'end_time': start + timedelta(hours=1),
            'max_students': 50,
            'materials': [],
        }
        fields.update(overrides)
        return persist(LiveClass(**fields))

    return _make_class


def auth_header(record) -> dict[str, str]:
    token = create_access_token(record.id, record.principal_kind)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def auth_headers():
    return auth_header
