"""
Shared utilities for Lattice360
"""
from utils.logger import logger
from utils.security import PasswordManager, RateLimiter, TokenManager, login_rate_limiter
from utils.cache import CacheManager
from utils.validators import (
    validate_schema, first_error,
    student_signup_schema, parent_signup_schema, login_schema, link_code_schema,
    academic_record_schema, task_schema, session_slot_schema, schedule_meeting_schema,
    mentor_note_schema, student_update_schema, reply_schema,
    chat_request_schema, report_request_schema, soften_note_schema,
)

__all__ = [
    'logger', 'PasswordManager', 'RateLimiter', 'TokenManager', 'login_rate_limiter',
    'CacheManager', 'validate_schema', 'first_error',
    'student_signup_schema', 'parent_signup_schema', 'login_schema', 'link_code_schema',
    'academic_record_schema', 'task_schema', 'session_slot_schema', 'schedule_meeting_schema',
    'mentor_note_schema', 'student_update_schema', 'reply_schema',
    'chat_request_schema', 'report_request_schema', 'soften_note_schema',
]
