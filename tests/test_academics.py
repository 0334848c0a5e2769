"""
Tests for attendance, risk and progress arithmetic
"""
import pytest

from academics import (
    GREEN, NO_DATA, RED, YELLOW, average_attendance, clean_academic_payload, enrich_roster,
    grade_trend, is_at_risk, report_inputs, risk_label, risk_level, risk_summary,
    subject_attendance, task_progress
)


def _record(student_id, *rows, cgpa=8.0, sgpa=7.5, mid_terms=None):
    return {
        'student_id': student_id,
        'cgpa': cgpa,
        'sgpa': sgpa,
        'mid_term_scores': mid_terms or [],
        'attendance_data': [
            {'subject': subject, 'total_periods': total, 'attended': attended}
            for subject, total, attended in rows
        ],
    }


class TestRiskLevel:

    @pytest.mark.parametrize('pct,expected', [
        (-1, NO_DATA), (0, RED), (74.9, RED), (75, YELLOW), (84.9, YELLOW), (85, GREEN), (100, GREEN),
    ])
    def test_thresholds(self, pct, expected):
        assert risk_level(pct) == expected

    def test_labels(self):
        assert risk_label(RED) == 'Critical'
        assert risk_label(YELLOW) == 'At Risk'
        assert risk_label(GREEN) == 'Stable'
        assert risk_label('unknown') == 'No Data'


class TestAttendance:

    def test_average_is_mean_of_subject_percentages(self):
        rows = [
            {'subject': 'Maths', 'total_periods': 40, 'attended': 30},   # 75%
            {'subject': 'Physics', 'total_periods': 20, 'attended': 19},  # 95%
        ]
        assert average_attendance(rows) == 85.0

    def test_average_skips_empty_subjects(self):
        rows = [
            {'subject': 'Maths', 'total_periods': 0, 'attended': 0},
            {'subject': 'Physics', 'total_periods': 3, 'attended': 2},
        ]
        assert average_attendance(rows) == 66.7

    def test_average_without_data(self):
        assert average_attendance([]) == -1
        assert average_attendance(None) == -1
        assert average_attendance([{'subject': 'Maths', 'total_periods': 0, 'attended': 0}]) == -1

    def test_subject_breakdown(self):
        row = subject_attendance({'subject': 'Maths', 'total_periods': 40, 'attended': 32})
        assert row['pct'] == 80.0
        assert row['missed'] == 8
        assert row['can_still_miss'] == 2  # floor(40 * 0.25) - 8
        assert row['risk'] == YELLOW

    def test_can_still_miss_never_negative(self):
        row = subject_attendance({'subject': 'Chem', 'total_periods': 20, 'attended': 10})
        assert row['can_still_miss'] == 0
        assert row['risk'] == RED

    def test_subject_without_periods(self):
        row = subject_attendance({'subject': 'Art', 'total_periods': 0, 'attended': 0})
        assert row['pct'] == -1
        assert row['risk'] == NO_DATA

    def test_string_inputs_are_coerced(self):
        row = subject_attendance({'subject': 'Maths', 'total_periods': '10', 'attended': 'x'})
        assert row['attended'] == 0
        assert row['missed'] == 10

    def test_is_at_risk_when_any_subject_red(self):
        assert is_at_risk(_record('s1', ('Maths', 10, 9), ('Chem', 10, 7))) is True
        assert is_at_risk(_record('s1', ('Maths', 10, 9), ('Chem', 10, 8))) is False
        assert is_at_risk(None) is False


class TestTaskProgress:

    def test_no_tasks(self):
        assert task_progress([]) == 0

    def test_rounds_to_nearest_percent(self):
        tasks = [{'is_completed': True}, {'is_completed': False}, {'is_completed': False}]
        assert task_progress(tasks) == 33
        tasks[1]['is_completed'] = True
        assert task_progress(tasks) == 67


class TestGradeTrend:

    def test_uses_mid_terms_when_several(self):
        record = _record('s1', mid_terms=[{'subject': 'Maths', 'score': 18}, {'subject': 'DSA', 'score': '22'}])
        assert grade_trend(record) == [{'name': 'Maths', 'value': 18.0}, {'name': 'DSA', 'value': 22.0}]

    def test_falls_back_to_cgpa(self):
        record = _record('s1', cgpa=8.6, mid_terms=[{'subject': 'Maths', 'score': 18}])
        assert grade_trend(record) == [{'name': 'Current', 'value': 8.6}]

    def test_empty(self):
        assert grade_trend(None) == []
        assert grade_trend(_record('s1', cgpa=0)) == []


class TestRoster:

    @pytest.fixture
    def cohort(self):
        students = [
            {'id': 's1', 'full_name': 'Asha Patel', 'email': 'asha@nmims.edu'},
            {'id': 's2', 'full_name': 'Rohan Mehta', 'email': 'rohan@nmims.edu'},
            {'id': 's3', 'full_name': 'Zara Khan', 'email': 'zara@nmims.edu'},
            {'id': 's4', 'full_name': 'Dev Shah', 'email': 'dev@nmims.edu'},
        ]
        records = [
            _record('s1', ('Maths', 10, 10)),
            _record('s2', ('Maths', 10, 6)),
            _record('s3', ('Maths', 10, 8)),
        ]
        return students, records

    def test_sorted_red_yellow_green_nodata(self, cohort):
        roster = enrich_roster(*cohort)
        assert [s['id'] for s in roster] == ['s2', 's3', 's1', 's4']
        assert roster[-1]['cgpa'] == 0
        assert roster[-1]['att'] == -1

    def test_risk_filter(self, cohort):
        roster = enrich_roster(*cohort, risk_filter=RED)
        assert [s['id'] for s in roster] == ['s2']

    def test_search_matches_name_or_email(self, cohort):
        assert [s['id'] for s in enrich_roster(*cohort, search='ZARA')] == ['s3']
        assert [s['id'] for s in enrich_roster(*cohort, search='dev@')] == ['s4']

    def test_summary_counts(self, cohort):
        assert risk_summary(*cohort) == {RED: 1, YELLOW: 1, GREEN: 1, NO_DATA: 1}


class TestAcademicPayload:

    def test_blank_rows_dropped_and_numbers_coerced(self):
        payload = clean_academic_payload(
            's1', 8.2, 0,
            [{'subject': ' Maths ', 'score': '18.5'}, {'subject': '', 'score': '9'}],
            [{'subject': 'Maths', 'total_periods': '40', 'attended': '35'}, {'subject': ' ', 'total_periods': '1'}],
        )
        assert payload == {
            'student_id': 's1',
            'cgpa': 8.2,
            'sgpa': 0.0,
            'mid_term_scores': [{'subject': 'Maths', 'score': 18.5}],
            'attendance_data': [{'subject': 'Maths', 'total_periods': 40, 'attended': 35}],
        }


class TestReportInputs:

    def test_collects_report_fields(self):
        student = {'id': 's1', 'full_name': 'Asha Patel', 'branch': 'CE', 'study_year': 'Second Year'}
        record = _record('s1', ('Maths', 40, 30), ('DSA', 0, 0), cgpa=8.0, sgpa=7.0,
                         mid_terms=[{'subject': 'Maths', 'score': 18}])
        tasks = [{'title': 'Lab 1', 'is_completed': True}, {'title': 'Lab 2', 'is_completed': False}]
        sessions = [{'status': 'confirmed'}, {'status': 'requested'}]
        updates = [{'content': f'update {i}'} for i in range(5)]

        data = report_inputs(student, record, tasks, sessions, updates)

        assert data['student_name'] == 'Asha Patel'
        assert data['attendance_pct'] == 75.0
        assert data['subject_attendance'] == [{'subject': 'Maths', 'pct': 75.0, 'attended': 30, 'total': 40}]
        assert data['total_tasks'] == 2
        assert data['completed_tasks'] == 1
        assert data['pending_tasks'] == ['Lab 2']
        assert data['confirmed_sessions'] == 1
        assert data['chat_highlights'] == '- update 0\n- update 1\n- update 2'

    def test_wellness_excluded_and_no_record(self):
        data = report_inputs({'email': 'x@y.z'}, None, [], [], [{'content': 'tired'}], include_wellness=False)
        assert data['student_name'] == 'x@y.z'
        assert data['attendance_pct'] == 0
        assert data['chat_highlights'] == ''
