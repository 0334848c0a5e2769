"""
Firestore access for the portal collections.

Queries use single equality filters and sort in memory so that no composite
indexes are needed.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from firebase_config import db

PROFILES_COL = 'profiles'
ACADEMIC_RECORDS_COL = 'academic_records'
TASKS_COL = 'tasks'
SESSIONS_COL = 'sessions'
MENTOR_NOTES_COL = 'mentor_notes'
STUDENT_UPDATES_COL = 'student_updates'
PARENT_LINK_CODES_COL = 'parent_link_codes'

SESSION_REQUESTED = 'requested'
SESSION_CONFIRMED = 'confirmed'
SESSION_NOT_AVAILABLE = 'not_available'
SESSION_RESCHEDULED = 'rescheduled'


def _now() -> str:
    return datetime.utcnow().isoformat()


def _doc_to_dict(doc) -> Optional[Dict[str, Any]]:
    if not doc.exists:
        return None
    return {**doc.to_dict(), 'id': doc.id}


def _stream(query) -> List[Dict[str, Any]]:
    return [{**d.to_dict(), 'id': d.id} for d in query.stream()]


def _get(collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
    if not doc_id:
        return None
    return _doc_to_dict(db.collection(collection).document(doc_id).get())


# ============================================================================
# PROFILES
# ============================================================================

def get_profile(uid: str) -> Optional[Dict[str, Any]]:
    return _get(PROFILES_COL, uid)


def get_profile_by_email(email: str) -> Optional[Dict[str, Any]]:
    if not email:
        return None
    query = db.collection(PROFILES_COL).where('email', '==', email.strip().lower()).limit(1)
    matches = _stream(query)
    return matches[0] if matches else None


def create_profile(uid: str, data: Dict[str, Any]) -> Dict[str, Any]:
    profile = {**data, 'id': uid, 'created_at': _now()}
    if profile.get('email'):
        profile['email'] = profile['email'].strip().lower()
    db.collection(PROFILES_COL).document(uid).set(profile)
    return profile


def update_profile(uid: str, fields: Dict[str, Any]):
    db.collection(PROFILES_COL).document(uid).update(fields)


def list_students() -> List[Dict[str, Any]]:
    students = _stream(db.collection(PROFILES_COL).where('role', '==', 'student'))
    students.sort(key=lambda s: (s.get('full_name') or s.get('email') or '').lower())
    return students


def first_mentor_id() -> Optional[str]:
    mentors = _stream(db.collection(PROFILES_COL).where('role', '==', 'mentor').limit(1))
    return mentors[0]['id'] if mentors else None


# ============================================================================
# ACADEMIC RECORDS (one per student, keyed by student id)
# ============================================================================

def get_academic_record(student_id: str) -> Optional[Dict[str, Any]]:
    return _get(ACADEMIC_RECORDS_COL, student_id)


def list_academic_records() -> List[Dict[str, Any]]:
    return _stream(db.collection(ACADEMIC_RECORDS_COL))


def upsert_academic_record(payload: Dict[str, Any]):
    record = {**payload, 'updated_at': _now()}
    db.collection(ACADEMIC_RECORDS_COL).document(payload['student_id']).set(record)
    return record


# ============================================================================
# TASKS
# ============================================================================

def _new_task(student_id, mentor_id, title, description):
    return {
        'student_id': student_id,
        'mentor_id': mentor_id,
        'title': title,
        'description': description or '',
        'is_completed': False,
        'created_at': _now(),
    }


def get_task(task_id: str) -> Optional[Dict[str, Any]]:
    return _get(TASKS_COL, task_id)


def list_tasks_for_student(student_id: str) -> List[Dict[str, Any]]:
    tasks = _stream(db.collection(TASKS_COL).where('student_id', '==', student_id))
    tasks.sort(key=lambda t: t.get('created_at', ''))
    return tasks


def list_tasks_by_mentor(mentor_id: str) -> List[Dict[str, Any]]:
    tasks = _stream(db.collection(TASKS_COL).where('mentor_id', '==', mentor_id))
    tasks.sort(key=lambda t: t.get('created_at', ''), reverse=True)
    return tasks


def create_task(student_id: str, mentor_id: str, title: str, description: str = '') -> str:
    _, ref = db.collection(TASKS_COL).add(_new_task(student_id, mentor_id, title, description))
    return ref.id


def create_tasks_for_students(student_ids: List[str], mentor_id: str, title: str, description: str = '') -> int:
    batch = db.batch()
    for sid in student_ids:
        batch.set(db.collection(TASKS_COL).document(), _new_task(sid, mentor_id, title, description))
    batch.commit()
    return len(student_ids)


def set_task_completed(task_id: str, completed: bool):
    db.collection(TASKS_COL).document(task_id).update({'is_completed': completed})


# ============================================================================
# SESSIONS
# ============================================================================

def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    return _get(SESSIONS_COL, session_id)


def list_sessions(student_id: str = None) -> List[Dict[str, Any]]:
    query = db.collection(SESSIONS_COL)
    if student_id:
        query = query.where('student_id', '==', student_id)
    sessions = _stream(query)
    sessions.sort(key=lambda s: s.get('session_date', ''))
    return sessions


def create_session(student_id: str, mentor_id: Optional[str], session_date: str, status: str) -> str:
    _, ref = db.collection(SESSIONS_COL).add({
        'student_id': student_id,
        'mentor_id': mentor_id,
        'session_date': session_date,
        'status': status,
        'rescheduled_by': None,
        'created_at': _now(),
    })
    return ref.id


def update_session(session_id: str, fields: Dict[str, Any]):
    db.collection(SESSIONS_COL).document(session_id).update(fields)


# ============================================================================
# MENTOR NOTES
# ============================================================================

def get_note(note_id: str) -> Optional[Dict[str, Any]]:
    return _get(MENTOR_NOTES_COL, note_id)


def list_notes(student_id: str = None, include_confidential: bool = True) -> List[Dict[str, Any]]:
    query = db.collection(MENTOR_NOTES_COL)
    if student_id:
        query = query.where('student_id', '==', student_id)
    notes = _stream(query)
    if not include_confidential:
        notes = [n for n in notes if not n.get('is_confidential')]
    notes.sort(key=lambda n: n.get('created_at', ''), reverse=True)
    return notes


def create_note(student_id: str, mentor_id: str, note_content: str, is_confidential: bool) -> str:
    _, ref = db.collection(MENTOR_NOTES_COL).add({
        'student_id': student_id,
        'mentor_id': mentor_id,
        'note_content': note_content,
        'is_confidential': bool(is_confidential),
        'created_at': _now(),
    })
    return ref.id


def delete_note(note_id: str):
    db.collection(MENTOR_NOTES_COL).document(note_id).delete()


# ============================================================================
# STUDENT WELLNESS UPDATES
# ============================================================================

def get_update(update_id: str) -> Optional[Dict[str, Any]]:
    return _get(STUDENT_UPDATES_COL, update_id)


def list_updates(student_id: str = None) -> List[Dict[str, Any]]:
    query = db.collection(STUDENT_UPDATES_COL)
    if student_id:
        query = query.where('student_id', '==', student_id)
    updates = _stream(query)
    updates.sort(key=lambda u: u.get('created_at', ''), reverse=True)
    return updates


def create_update(student_id: str, content: str) -> str:
    _, ref = db.collection(STUDENT_UPDATES_COL).add({
        'student_id': student_id,
        'content': content,
        'mentor_reply': None,
        'created_at': _now(),
    })
    return ref.id


def reply_to_update(update_id: str, reply: str):
    db.collection(STUDENT_UPDATES_COL).document(update_id).update({
        'mentor_reply': reply,
        'replied_at': _now(),
    })


# ============================================================================
# PARENT LINK CODES
# ============================================================================

def save_link_code(parent_uid: str, code: str, child_email: str, expires_at: datetime):
    db.collection(PARENT_LINK_CODES_COL).document(parent_uid).set({
        'code': code,
        'child_email': child_email,
        'expires_at': expires_at.isoformat(),
        'attempts': 0,
        'created_at': _now(),
    })


def get_link_code(parent_uid: str) -> Optional[Dict[str, Any]]:
    return _get(PARENT_LINK_CODES_COL, parent_uid)


def record_link_code_attempt(parent_uid: str, attempts: int):
    db.collection(PARENT_LINK_CODES_COL).document(parent_uid).update({'attempts': attempts})


def delete_link_code(parent_uid: str):
    db.collection(PARENT_LINK_CODES_COL).document(parent_uid).delete()
