"""
Shared fixtures: Firebase is patched out before the app is imported so the
suite runs without credentials or network access.
"""
import json
import os
import sys
from types import SimpleNamespace
from unittest import mock

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

os.environ['FLASK_ENV'] = 'testing'
os.environ['FIREBASE_CREDENTIALS_PATH'] = os.path.join(os.path.dirname(__file__), 'missing-service-account.json')
os.environ['FIREBASE_CREDENTIALS'] = json.dumps({'type': 'service_account', 'project_id': 'lattice360-test'})

from fake_firestore import FakeFirestore  # noqa: E402

fake_db = FakeFirestore()

for _patcher in (
    mock.patch('firebase_admin.credentials.Certificate', return_value=mock.MagicMock()),
    mock.patch('firebase_admin.initialize_app'),
    mock.patch('firebase_admin.firestore.client', return_value=fake_db),
):
    _patcher.start()

import portal_store as store  # noqa: E402
from utils import CacheManager, PasswordManager, login_rate_limiter  # noqa: E402

DEFAULT_PASSWORD = 'Password123'
DEFAULT_PASSWORD_HASH = PasswordManager.hash_password(DEFAULT_PASSWORD)


@pytest.fixture(autouse=True)
def clean_state():
    fake_db.reset()
    CacheManager.clear()
    login_rate_limiter.clear()
    yield


@pytest.fixture
def db():
    return fake_db


@pytest.fixture
def app_module():
    import app as flask_app
    return flask_app


@pytest.fixture
def app(app_module):
    """Create application for testing"""
    return app_module.app


@pytest.fixture
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture
def auth_users(monkeypatch, app_module):
    """In-memory Firebase Auth user registry keyed by email"""
    users = {}

    def get_user_by_email(email):
        if email not in users:
            raise app_module.auth.UserNotFoundError(f'No user record found for the provided email: {email}.')
        return users[email]

    def create_user(email, password=None, display_name=None, **kwargs):
        user = SimpleNamespace(uid=f'uid-{len(users) + 1}', email=email, display_name=display_name)
        users[email] = user
        return user

    monkeypatch.setattr(app_module.auth, 'get_user_by_email', get_user_by_email)
    monkeypatch.setattr(app_module.auth, 'create_user', create_user)
    return users


@pytest.fixture
def make_user(auth_users):
    """Create an auth user plus profile; returns the stored profile"""
    def _make(role, email, full_name=None, **fields):
        uid = f'{role}-{len(auth_users) + 1}'
        auth_users[email] = SimpleNamespace(uid=uid, email=email, display_name=full_name)
        return store.create_profile(uid, {
            'email': email,
            'role': role,
            'full_name': full_name or email.split('@')[0].title(),
            'password_hash': DEFAULT_PASSWORD_HASH,
            **fields,
        })
    return _make


@pytest.fixture
def login_as(client):
    def _login(profile):
        with client.session_transaction() as sess:
            sess['uid'] = profile['id']
            sess['role'] = profile['role']
    return _login


@pytest.fixture
def mentor(make_user):
    return make_user('mentor', 'mentor@nmims.edu', 'Dr. Rao')


@pytest.fixture
def student(make_user):
    return make_user('student', 'asha@nmims.edu', 'Asha Patel', branch='Computer Engineering',
                     study_year='Second Year', hide_wellness=False)


class FakeAI:
    """Stand-in for MentorAI with canned responses"""

    def __init__(self, available=True, chunks=('Hello', ' there'), summary='Steady progress.',
                 stream_error=None, report_error=None, soften_prefix='Gently: '):
        self.ai_available = available
        self.chunks = list(chunks)
        self.summary = summary
        self.stream_error = stream_error
        self.report_error = report_error
        self.soften_prefix = soften_prefix
        self.chat_calls = []
        self.report_calls = []
        self.softened = []

    def stream_chat(self, messages):
        self.chat_calls.append(messages)
        if self.stream_error:
            raise self.stream_error
        return iter(self.chunks)

    def generate_report(self, data):
        self.report_calls.append(data)
        if self.report_error:
            raise self.report_error
        return self.summary

    def soften_note(self, note):
        self.softened.append(note)
        if not note or not note.strip():
            return ''
        return f'{self.soften_prefix}{note}'


@pytest.fixture
def fake_ai(monkeypatch, app_module):
    ai = FakeAI()
    monkeypatch.setattr(app_module, 'ai', ai)
    return ai
