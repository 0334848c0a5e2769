"""
Attendance, risk and progress calculations shared by the three dashboards
"""
import math
from typing import Any, Dict, List, Optional

NO_DATA = 'NoData'
RED = 'Red'
YELLOW = 'Yellow'
GREEN = 'Green'

CRITICAL_THRESHOLD = 75
STABLE_THRESHOLD = 85
MAX_ABSENCE_RATIO = 0.25

RISK_ORDER = {RED: 0, YELLOW: 1, GREEN: 2, NO_DATA: 3}
RISK_LABELS = {RED: 'Critical', YELLOW: 'At Risk', GREEN: 'Stable', NO_DATA: 'No Data'}
RISK_FILTERS = ('All', RED, YELLOW, GREEN)


def _number(value, cast=float):
    try:
        result = float(value)
    except (TypeError, ValueError):
        return cast(0)
    if math.isnan(result) or math.isinf(result):
        return cast(0)
    return cast(result)


def _round1(value: float) -> float:
    # half-up, matching Math.round(x * 10) / 10 on the client charts
    return math.floor(value * 10 + 0.5) / 10


def risk_level(att_pct: float) -> str:
    if att_pct < 0:
        return NO_DATA
    if att_pct < CRITICAL_THRESHOLD:
        return RED
    if att_pct < STABLE_THRESHOLD:
        return YELLOW
    return GREEN


def risk_label(level: str) -> str:
    return RISK_LABELS.get(level, RISK_LABELS[NO_DATA])


def average_attendance(rows: Optional[List[Dict[str, Any]]]) -> float:
    """Mean of per-subject attendance percentages, -1 when nothing is recorded"""
    valid = [r for r in (rows or []) if _number(r.get('total_periods')) > 0]
    if not valid:
        return -1
    total = sum(_number(r.get('attended')) / _number(r.get('total_periods')) * 100 for r in valid)
    return _round1(total / len(valid))


def subject_attendance(row: Dict[str, Any]) -> Dict[str, Any]:
    """Per-subject breakdown: percentage, missed periods, remaining allowance, risk"""
    total = _number(row.get('total_periods'), int)
    attended = _number(row.get('attended'), int)
    result = {'subject': row.get('subject', ''), 'total_periods': total, 'attended': attended}
    if total <= 0:
        result.update(pct=-1, missed=0, can_still_miss=0, risk=NO_DATA)
        return result
    pct = attended / total * 100
    missed = total - attended
    max_missable = math.floor(total * MAX_ABSENCE_RATIO)
    result.update(
        pct=_round1(pct),
        missed=missed,
        can_still_miss=max(0, max_missable - missed),
        risk=GREEN if pct >= STABLE_THRESHOLD else YELLOW if pct >= CRITICAL_THRESHOLD else RED,
    )
    return result


def attendance_table(record: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [subject_attendance(r) for r in ((record or {}).get('attendance_data') or [])]


def is_at_risk(record: Optional[Dict[str, Any]]) -> bool:
    return any(row['risk'] == RED for row in attendance_table(record))


def task_progress(tasks: List[Dict[str, Any]]) -> int:
    if not tasks:
        return 0
    done = sum(1 for t in tasks if t.get('is_completed'))
    return int(math.floor(done / len(tasks) * 100 + 0.5))


def grade_trend(record: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Chart series: mid-term scores when there are several, else the current CGPA"""
    if not record:
        return []
    scores = record.get('mid_term_scores') or []
    if len(scores) > 1:
        return [{'name': m.get('subject', ''), 'value': _number(m.get('score'))} for m in scores]
    if record.get('cgpa'):
        return [{'name': 'Current', 'value': _number(record.get('cgpa'))}]
    return []


def enrich_roster(students: List[Dict[str, Any]],
                  records: List[Dict[str, Any]],
                  risk_filter: str = 'All',
                  search: str = '') -> List[Dict[str, Any]]:
    """Join students with their academic record, filter and sort by risk"""
    by_student = {r.get('student_id'): r for r in records}
    needle = (search or '').strip().lower()
    roster = []
    for student in students:
        rec = by_student.get(student.get('id'))
        att = average_attendance((rec or {}).get('attendance_data'))
        level = risk_level(att)
        if risk_filter and risk_filter != 'All' and level != risk_filter:
            continue
        if needle:
            name = (student.get('full_name') or '').lower()
            email = (student.get('email') or '').lower()
            if needle not in name and needle not in email:
                continue
        roster.append({
            **student,
            'cgpa': (rec or {}).get('cgpa') or 0,
            'sgpa': (rec or {}).get('sgpa') or 0,
            'att': att,
            'risk': level,
            'rec': rec,
        })
    roster.sort(key=lambda s: RISK_ORDER[s['risk']])
    return roster


def risk_summary(students: List[Dict[str, Any]], records: List[Dict[str, Any]]) -> Dict[str, int]:
    counts = {RED: 0, YELLOW: 0, GREEN: 0, NO_DATA: 0}
    for entry in enrich_roster(students, records):
        counts[entry['risk']] += 1
    return counts


def clean_academic_payload(student_id: str, cgpa, sgpa,
                           mid_terms: List[Dict[str, Any]],
                           attendance: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Normalise mentor form input into an academic_records document"""
    clean_mid = [
        {'subject': m['subject'].strip(), 'score': _number(m.get('score'))}
        for m in mid_terms if (m.get('subject') or '').strip()
    ]
    clean_att = [
        {
            'subject': a['subject'].strip(),
            'total_periods': _number(a.get('total_periods'), int),
            'attended': _number(a.get('attended'), int),
        }
        for a in attendance if (a.get('subject') or '').strip()
    ]
    return {
        'student_id': student_id,
        'sgpa': _number(sgpa),
        'cgpa': _number(cgpa),
        'mid_term_scores': clean_mid,
        'attendance_data': clean_att,
    }


def report_inputs(student: Dict[str, Any],
                  record: Optional[Dict[str, Any]],
                  tasks: List[Dict[str, Any]],
                  sessions: List[Dict[str, Any]],
                  updates: List[Dict[str, Any]],
                  include_wellness: bool = True) -> Dict[str, Any]:
    """Collect everything the progress report needs for one student"""
    record = record or {}
    att = average_attendance(record.get('attendance_data'))
    subjects = [row for row in attendance_table(record) if row['pct'] >= 0]
    highlights = ''
    if include_wellness and updates:
        highlights = '\n'.join(f"- {u.get('content', '')}" for u in updates[:3])
    return {
        'student_name': student.get('full_name') or student.get('email') or 'Student',
        'branch': student.get('branch') or '',
        'study_year': student.get('study_year') or '',
        'cgpa': _number(record.get('cgpa')),
        'sgpa': _number(record.get('sgpa')),
        'attendance_pct': max(att, 0),
        'subject_attendance': [
            {'subject': r['subject'], 'pct': r['pct'], 'attended': r['attended'], 'total': r['total_periods']}
            for r in subjects
        ],
        'mid_term_scores': [
            {'subject': m.get('subject', ''), 'score': _number(m.get('score'))}
            for m in (record.get('mid_term_scores') or [])
        ],
        'total_tasks': len(tasks),
        'completed_tasks': sum(1 for t in tasks if t.get('is_completed')),
        'pending_tasks': [t.get('title', '') for t in tasks if not t.get('is_completed')],
        'total_sessions': len(sessions),
        'confirmed_sessions': sum(1 for s in sessions if s.get('status') in ('confirmed', 'completed')),
        'chat_highlights': highlights,
    }
