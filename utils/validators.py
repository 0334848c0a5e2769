"""
Input validation schemas (marshmallow) for forms and JSON bodies
"""
from marshmallow import (
    EXCLUDE, Schema, ValidationError, fields, pre_load, validate, validates_schema
)

ROLES = ('student', 'mentor', 'parent')
CHAT_ROLES = ('user', 'assistant')


def _strip_strings(data):
    if not isinstance(data, dict):
        return data
    return {k: (v.strip() if isinstance(v, str) else v) for k, v in data.items()}


class BaseSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    @pre_load
    def strip_whitespace(self, data, **kwargs):
        return _strip_strings(data)


class _PasswordPairSchema(BaseSchema):
    @validates_schema
    def passwords_match(self, data, **kwargs):
        if data.get('password') != data.get('confirm_password'):
            raise ValidationError('Passwords do not match!', 'confirm_password')


class StudentSignupSchema(_PasswordPairSchema):
    first_name = fields.Str(required=True, validate=validate.Length(min=1, max=60))
    last_name = fields.Str(required=True, validate=validate.Length(min=1, max=60))
    email = fields.Email(required=True)
    phone = fields.Str(load_default='', validate=validate.Length(max=20))
    branch = fields.Str(load_default='', validate=validate.Length(max=80))
    password = fields.Str(required=True)
    confirm_password = fields.Str(required=True)


class ParentSignupSchema(_PasswordPairSchema):
    full_name = fields.Str(required=True, validate=validate.Length(min=1, max=120))
    child_email = fields.Email(required=True)
    email = fields.Email(required=True)
    password = fields.Str(required=True)
    confirm_password = fields.Str(required=True)

    @validates_schema
    def distinct_child(self, data, **kwargs):
        if data.get('email') and data.get('email', '').lower() == data.get('child_email', '').lower():
            raise ValidationError("Child email must be different from your own.", 'child_email')


class LoginSchema(BaseSchema):
    email = fields.Email(required=True)
    password = fields.Str(required=True, validate=validate.Length(min=1))
    role = fields.Str(load_default='student', validate=validate.OneOf(ROLES))


class LinkCodeSchema(BaseSchema):
    code = fields.Str(required=True, validate=validate.Regexp(r'^\d{6}$', error='Enter the 6-digit code.'))


class AcademicRecordSchema(BaseSchema):
    student_id = fields.Str(required=True, validate=validate.Length(min=1))
    cgpa = fields.Float(required=True, validate=validate.Range(min=0, max=10))
    sgpa = fields.Float(load_default=0.0, validate=validate.Range(min=0, max=10))

    @pre_load
    def blank_sgpa(self, data, **kwargs):
        if isinstance(data, dict) and data.get('sgpa') in ('', None):
            data = {k: v for k, v in data.items() if k != 'sgpa'}
        return data


class TaskSchema(BaseSchema):
    title = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    description = fields.Str(load_default='', validate=validate.Length(max=2000))
    student_id = fields.Str(load_default='')
    assign_all = fields.Boolean(load_default=False)

    @validates_schema
    def target_student(self, data, **kwargs):
        if not data.get('assign_all') and not data.get('student_id'):
            raise ValidationError('Select a student.', 'student_id')


class SessionSlotSchema(BaseSchema):
    date = fields.Date(required=True)
    time = fields.Str(required=True, validate=validate.Regexp(r'^([01]\d|2[0-3]):[0-5]\d$', error='Pick a valid time.'))


class ScheduleMeetingSchema(SessionSlotSchema):
    student_id = fields.Str(required=True, validate=validate.Length(min=1))


class MentorNoteSchema(BaseSchema):
    student_id = fields.Str(required=True, validate=validate.Length(min=1))
    note_content = fields.Str(required=True, validate=validate.Length(min=1, max=5000))
    is_confidential = fields.Boolean(load_default=False)


class StudentUpdateSchema(BaseSchema):
    content = fields.Str(required=True, validate=validate.Length(min=1, max=5000))


class ReplySchema(BaseSchema):
    reply = fields.Str(required=True, validate=validate.Length(min=1, max=5000))


class ChatMessageSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    role = fields.Str(required=True, validate=validate.OneOf(CHAT_ROLES))
    content = fields.Str(required=True)


class ChatRequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    messages = fields.List(fields.Nested(ChatMessageSchema), load_default=list)


class SubjectAttendanceSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    subject = fields.Str(required=True)
    pct = fields.Float(load_default=0)
    attended = fields.Integer(load_default=0)
    total = fields.Integer(load_default=0)


class MidScoreSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    subject = fields.Str(required=True)
    score = fields.Float(load_default=0)


class ReportRequestSchema(Schema):
    """Body of POST /api/generate-report (camelCase keys on the wire)"""

    class Meta:
        unknown = EXCLUDE

    student_name = fields.Str(data_key='studentName', load_default='Student')
    branch = fields.Str(load_default='', allow_none=True)
    study_year = fields.Str(data_key='studyYear', load_default='', allow_none=True)
    cgpa = fields.Float(load_default=0, allow_none=True)
    sgpa = fields.Float(load_default=0, allow_none=True)
    attendance_pct = fields.Float(data_key='attendancePct', load_default=0, allow_none=True)
    subject_attendance = fields.List(fields.Nested(SubjectAttendanceSchema), data_key='subjectAttendance',
                                     load_default=list, allow_none=True)
    mid_term_scores = fields.List(fields.Nested(MidScoreSchema), data_key='midTermScores',
                                  load_default=list, allow_none=True)
    total_tasks = fields.Integer(data_key='totalTasks', load_default=0, allow_none=True)
    completed_tasks = fields.Integer(data_key='completedTasks', load_default=0, allow_none=True)
    pending_tasks = fields.List(fields.Str(), data_key='pendingTasks', load_default=list, allow_none=True)
    total_sessions = fields.Integer(data_key='totalSessions', load_default=0, allow_none=True)
    confirmed_sessions = fields.Integer(data_key='confirmedSessions', load_default=0, allow_none=True)
    chat_highlights = fields.Str(data_key='chatHighlights', load_default='', allow_none=True)


class SoftenNoteSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    note = fields.Str(load_default='', allow_none=True)


student_signup_schema = StudentSignupSchema()
parent_signup_schema = ParentSignupSchema()
login_schema = LoginSchema()
link_code_schema = LinkCodeSchema()
academic_record_schema = AcademicRecordSchema()
task_schema = TaskSchema()
session_slot_schema = SessionSlotSchema()
schedule_meeting_schema = ScheduleMeetingSchema()
mentor_note_schema = MentorNoteSchema()
student_update_schema = StudentUpdateSchema()
reply_schema = ReplySchema()
chat_request_schema = ChatRequestSchema()
report_request_schema = ReportRequestSchema()
soften_note_schema = SoftenNoteSchema()


def validate_schema(schema, data):
    """Load data through a schema; returns (True, result) or (False, errors)"""
    try:
        return True, schema.load(data or {})
    except ValidationError as err:
        return False, err.messages


def first_error(errors) -> str:
    """Flatten marshmallow error messages into one flash-friendly line"""
    if isinstance(errors, dict):
        for key, value in errors.items():
            message = first_error(value)
            if key == '_schema' or isinstance(value, dict):
                return message
            return f"{key.replace('_', ' ')}: {message}"
        return ''
    if isinstance(errors, (list, tuple)) and errors:
        return first_error(errors[0])
    return str(errors)
