"""
Tests for landing, signup, login, parent verification and role gating
"""
import pytest

import portal_store as store
from conftest import DEFAULT_PASSWORD


class TestPublicPages:

    def test_index_loads(self, client):
        response = client.get('/')
        assert response.status_code == 200
        assert b'Lattice' in response.data

    def test_index_redirects_when_logged_in(self, client, login_as, mentor):
        login_as(mentor)
        response = client.get('/')
        assert response.status_code == 302
        assert response.location.endswith('/mentor')

    @pytest.mark.parametrize('path', ['/signup', '/signup/student', '/signup/parent', '/login'])
    def test_pages_load(self, client, path):
        assert client.get(path).status_code == 200

    def test_unknown_page_is_404(self, client):
        response = client.get('/nope')
        assert response.status_code == 404
        assert b'Page not found' in response.data


class TestRoleGating:

    @pytest.mark.parametrize('path', ['/student', '/mentor', '/parent', '/mentor/report.pdf',
                                      '/signup/parent/verify'])
    def test_protected_routes_redirect_to_login(self, client, path):
        response = client.get(path)
        assert response.status_code == 302
        assert '/login' in response.location

    def test_wrong_role_lands_on_own_dashboard(self, client, login_as, student):
        login_as(student)
        response = client.get('/mentor')
        assert response.status_code == 302
        assert response.location.endswith('/student')

    def test_parent_cannot_open_student_dashboard(self, client, login_as, make_user):
        parent = make_user('parent', 'meera@example.com', child_email='asha@nmims.edu', child_verified=True)
        login_as(parent)
        response = client.get('/student')
        assert response.location.endswith('/parent')

    def test_missing_profile_clears_session(self, client):
        with client.session_transaction() as sess:
            sess['uid'] = 'ghost'
            sess['role'] = 'student'
        response = client.get('/student')
        assert response.status_code == 302
        assert '/login' in response.location
        with client.session_transaction() as sess:
            assert 'uid' not in sess

    def test_logout(self, client, login_as, student):
        login_as(student)
        response = client.get('/logout')
        assert '/login' in response.location
        with client.session_transaction() as sess:
            assert 'uid' not in sess


class TestStudentSignup:

    def _form(self, **overrides):
        form = {
            'first_name': 'Asha',
            'last_name': 'Patel',
            'email': 'Asha@NMIMS.edu',
            'phone': '9876543210',
            'branch': 'Computer Engineering',
            'password': 'Password123',
            'confirm_password': 'Password123',
        }
        form.update(overrides)
        return form

    def test_creates_auth_user_and_profile(self, client, auth_users, db):
        response = client.post('/signup/student', data=self._form())
        assert response.status_code == 302
        assert '/login' in response.location

        user = auth_users['asha@nmims.edu']
        profile = store.get_profile(user.uid)
        assert profile['role'] == 'student'
        assert profile['full_name'] == 'Asha Patel'
        assert profile['institution_id'] == 'NMIMS'
        assert profile['hide_wellness'] is False
        assert profile['password_hash'] != 'Password123'

    def test_password_mismatch(self, client, auth_users):
        response = client.post('/signup/student', data=self._form(confirm_password='Password124'))
        assert response.status_code == 400
        assert b'Passwords do not match!' in response.data
        assert auth_users == {}

    def test_weak_password(self, client, auth_users):
        response = client.post('/signup/student', data=self._form(password='weakpass', confirm_password='weakpass'))
        assert response.status_code == 400
        assert b'Password not strong enough' in response.data

    def test_duplicate_email(self, client, student):
        response = client.post('/signup/student', data=self._form(email='asha@nmims.edu'))
        assert '/login' in response.location
        assert len(store.list_students()) == 1


class TestLogin:

    def test_login_success(self, client, student):
        response = client.post('/login', data={
            'email': 'asha@nmims.edu', 'password': DEFAULT_PASSWORD, 'role': 'student'
        })
        assert response.status_code == 302
        assert response.location.endswith('/student')
        with client.session_transaction() as sess:
            assert sess['uid'] == student['id']
            assert sess['role'] == 'student'
        assert store.get_profile(student['id'])['last_login_at']

    def test_role_mismatch_redirects_to_real_role(self, client, mentor):
        response = client.post('/login', data={
            'email': 'mentor@nmims.edu', 'password': DEFAULT_PASSWORD, 'role': 'student'
        }, follow_redirects=True)
        assert response.status_code == 200
        assert b'registered as &#34;mentor&#34;' in response.data or b'registered as "mentor"' in response.data
        with client.session_transaction() as sess:
            assert sess['role'] == 'mentor'

    def test_wrong_password(self, client, student):
        response = client.post('/login', data={
            'email': 'asha@nmims.edu', 'password': 'Nope12345', 'role': 'student'
        }, follow_redirects=True)
        assert b'Invalid email or password' in response.data
        with client.session_transaction() as sess:
            assert 'uid' not in sess

    def test_unknown_email(self, client, auth_users):
        response = client.post('/login', data={
            'email': 'nobody@nmims.edu', 'password': DEFAULT_PASSWORD
        }, follow_redirects=True)
        assert b'Invalid email or password' in response.data

    def test_account_without_profile(self, client, auth_users):
        from types import SimpleNamespace
        auth_users['orphan@nmims.edu'] = SimpleNamespace(uid='orphan', email='orphan@nmims.edu')
        response = client.post('/login', data={
            'email': 'orphan@nmims.edu', 'password': DEFAULT_PASSWORD
        }, follow_redirects=True)
        assert b'Invalid email or password' in response.data
        assert b'no role assigned' not in response.data

    def test_unassigned_role_wrong_password_stays_generic(self, client, make_user):
        make_user('admin', 'ops@nmims.edu')
        response = client.post('/login', data={
            'email': 'ops@nmims.edu', 'password': 'Wrong1234'
        }, follow_redirects=True)
        assert b'Invalid email or password' in response.data
        assert b'no role assigned' not in response.data

    def test_unassigned_role_after_correct_password(self, client, make_user):
        make_user('admin', 'ops@nmims.edu')
        response = client.post('/login', data={
            'email': 'ops@nmims.edu', 'password': DEFAULT_PASSWORD
        }, follow_redirects=True)
        assert b'no role assigned' in response.data
        with client.session_transaction() as sess:
            assert 'uid' not in sess

    def test_lockout_after_repeated_failures(self, client, student):
        for _ in range(5):
            client.post('/login', data={'email': 'asha@nmims.edu', 'password': 'Wrong1234'})
        response = client.post('/login', data={
            'email': 'asha@nmims.edu', 'password': DEFAULT_PASSWORD
        }, follow_redirects=True)
        assert b'Too many login attempts' in response.data


class TestParentSignupAndVerification:

    def _signup(self, client, child_email='asha@nmims.edu'):
        return client.post('/signup/parent', data={
            'full_name': 'Meera Patel',
            'child_email': child_email,
            'email': 'meera@example.com',
            'password': 'Password123',
            'confirm_password': 'Password123',
        })

    def _parent_uid(self, auth_users):
        return auth_users['meera@example.com'].uid

    def test_signup_emails_code_to_child(self, client, app_module, auth_users, db, student):
        with app_module.mail.record_messages() as outbox:
            response = self._signup(client)

        assert response.location.endswith('/signup/parent/verify')
        uid = self._parent_uid(auth_users)
        profile = store.get_profile(uid)
        assert profile['role'] == 'parent'
        assert profile['child_verified'] is False

        pending = store.get_link_code(uid)
        assert len(outbox) == 1
        assert outbox[0].recipients == ['asha@nmims.edu']
        assert pending['code'] in outbox[0].body
        assert pending['attempts'] == 0

    def test_correct_code_verifies(self, client, auth_users, student):
        self._signup(client)
        uid = self._parent_uid(auth_users)
        code = store.get_link_code(uid)['code']

        response = client.post('/signup/parent/verify', data={'code': code})
        assert response.location.endswith('/parent')
        assert store.get_profile(uid)['child_verified'] is True
        assert store.get_link_code(uid) is None

    def test_wrong_code_counts_attempts(self, client, auth_users, student):
        self._signup(client)
        uid = self._parent_uid(auth_users)
        code = store.get_link_code(uid)['code']
        wrong = '000000' if code != '000000' else '111111'

        response = client.post('/signup/parent/verify', data={'code': wrong}, follow_redirects=True)
        assert b'Invalid code' in response.data
        assert store.get_link_code(uid)['attempts'] == 1
        assert store.get_profile(uid)['child_verified'] is False

    def test_too_many_attempts_blocks_even_correct_code(self, client, auth_users, student):
        self._signup(client)
        uid = self._parent_uid(auth_users)
        code = store.get_link_code(uid)['code']
        store.record_link_code_attempt(uid, 5)

        response = client.post('/signup/parent/verify', data={'code': code}, follow_redirects=True)
        assert b'Too many incorrect attempts' in response.data
        assert store.get_profile(uid)['child_verified'] is False

    def test_expired_code(self, client, auth_users, db, student):
        self._signup(client)
        uid = self._parent_uid(auth_users)
        code = store.get_link_code(uid)['code']
        db.collection('parent_link_codes').document(uid).update({'expires_at': '2000-01-01T00:00:00'})

        response = client.post('/signup/parent/verify', data={'code': code}, follow_redirects=True)
        assert b'expired' in response.data
        assert store.get_link_code(uid) is None

    def test_malformed_code(self, client, auth_users, student):
        self._signup(client)
        response = client.post('/signup/parent/verify', data={'code': '12ab'}, follow_redirects=True)
        assert b'Enter the 6-digit code.' in response.data

    def test_resend_issues_new_code(self, client, app_module, auth_users, student):
        self._signup(client)
        uid = self._parent_uid(auth_users)
        store.record_link_code_attempt(uid, 3)

        with app_module.mail.record_messages() as outbox:
            response = client.post('/signup/parent/verify/resend')
        assert response.location.endswith('/signup/parent/verify')
        assert len(outbox) == 1
        assert store.get_link_code(uid)['attempts'] == 0

    def test_verified_parent_skips_verify_page(self, client, login_as, make_user):
        parent = make_user('parent', 'meera@example.com', child_email='asha@nmims.edu', child_verified=True)
        login_as(parent)
        response = client.get('/signup/parent/verify')
        assert response.location.endswith('/parent')

    def test_child_email_must_differ(self, client, auth_users):
        response = client.post('/signup/parent', data={
            'full_name': 'Meera Patel',
            'child_email': 'meera@example.com',
            'email': 'meera@example.com',
            'password': 'Password123',
            'confirm_password': 'Password123',
        })
        assert response.status_code == 400
        assert auth_users == {}


class TestCreateMentorCommand:

    def test_creates_mentor(self, app, auth_users):
        runner = app.test_cli_runner()
        result = runner.invoke(args=['create-mentor', 'Rao@NMIMS.edu', 'Dr. Rao'],
                               input='Password123\nPassword123\n')
        assert result.exit_code == 0, result.output
        uid = auth_users['rao@nmims.edu'].uid
        profile = store.get_profile(uid)
        assert profile['role'] == 'mentor'
        assert profile['full_name'] == 'Dr. Rao'

    def test_rejects_weak_password(self, app, auth_users):
        result = app.test_cli_runner().invoke(args=['create-mentor', 'rao@nmims.edu', 'Dr. Rao'],
                                              input='weak\nweak\n')
        assert result.exit_code != 0
        assert auth_users == {}

    def test_rejects_existing_email(self, app, mentor):
        result = app.test_cli_runner().invoke(args=['create-mentor', 'mentor@nmims.edu', 'Dr. Rao'],
                                              input='Password123\nPassword123\n')
        assert result.exit_code != 0
        assert 'already has an account' in result.output
