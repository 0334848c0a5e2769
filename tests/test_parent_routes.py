"""
Tests for the parent dashboard
"""
import pytest

import portal_store as store


@pytest.fixture
def parent(make_user, student):
    return make_user('parent', 'meera@example.com', 'Meera Patel',
                     child_email=student['email'], child_verified=True)


@pytest.fixture
def logged_in(client, login_as, parent):
    login_as(parent)
    return parent


class TestParentDashboard:

    def test_unverified_parent_is_prompted(self, client, login_as, make_user, student):
        parent = make_user('parent', 'meera@example.com', child_email=student['email'], child_verified=False)
        login_as(parent)
        response = client.get('/parent')
        assert response.status_code == 200
        assert b'Verify your link' in response.data
        assert b'Asha Patel' not in response.data

    def test_no_matching_student(self, client, login_as, make_user):
        parent = make_user('parent', 'meera@example.com', child_email='ghost@nmims.edu', child_verified=True)
        login_as(parent)
        response = client.get('/parent')
        assert b'No student linked' in response.data

    @pytest.mark.parametrize('tab', ['trends', 'attendance', 'feedback', 'bogus'])
    def test_tabs_render(self, client, logged_in, student, mentor, fake_ai, tab):
        store.upsert_academic_record({
            'student_id': student['id'], 'cgpa': 8.1, 'sgpa': 7.9,
            'mid_term_scores': [{'subject': 'Maths', 'score': 18}, {'subject': 'DSA', 'score': 21}],
            'attendance_data': [{'subject': 'Maths', 'total_periods': 40, 'attended': 36}],
        })
        response = client.get(f'/parent?tab={tab}')
        assert response.status_code == 200
        assert b'Asha Patel' in response.data

    def test_risk_banner(self, client, logged_in, student, fake_ai):
        store.upsert_academic_record({
            'student_id': student['id'], 'cgpa': 7.0, 'sgpa': 7.0, 'mid_term_scores': [],
            'attendance_data': [
                {'subject': 'Maths', 'total_periods': 40, 'attended': 39},
                {'subject': 'Chemistry', 'total_periods': 20, 'attended': 10},
            ],
        })
        response = client.get('/parent?tab=attendance')
        assert b'below 75%' in response.data

    def test_feedback_is_softened_and_confidential_hidden(self, client, logged_in, student, mentor, fake_ai):
        store.create_note(student['id'], mentor['id'], 'Never submits on time', False)
        store.create_note(student['id'], mentor['id'], 'Parents divorcing', True)

        body = client.get('/parent?tab=feedback').get_data(as_text=True)
        assert 'Gently: Never submits on time' in body
        assert 'Parents divorcing' not in body
        assert fake_ai.softened == ['Never submits on time']

    def test_softening_failure_shows_original(self, client, logged_in, student, mentor, fake_ai):
        def boom(note):
            raise RuntimeError('unexpected')
        fake_ai.soften_note = boom
        store.create_note(student['id'], mentor['id'], 'Needs to focus', False)
        body = client.get('/parent?tab=feedback').get_data(as_text=True)
        assert 'Needs to focus' in body

    def test_wellness_updates_visible(self, client, logged_in, student, fake_ai):
        store.create_update(student['id'], 'Loving the robotics club')
        body = client.get('/parent?tab=feedback').get_data(as_text=True)
        assert 'Loving the robotics club' in body

    def test_wellness_updates_hidden_by_student(self, client, logged_in, student, fake_ai):
        store.update_profile(student['id'], {'hide_wellness': True})
        store.create_update(student['id'], 'Private worries')
        body = client.get('/parent?tab=feedback').get_data(as_text=True)
        assert 'Private worries' not in body
        assert 'keep wellness updates private' in body
