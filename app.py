from flask import (
    Flask, render_template, request, redirect, url_for, session, flash, jsonify, abort,
    Response, send_file, stream_with_context
)
from firebase_config import auth
from datetime import datetime, date, timedelta
from functools import wraps
from io import BytesIO
import os
import traceback

import click
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_talisman import Talisman
from flask_mail import Mail, Message

import portal_store as store
from academics import (
    RISK_FILTERS, attendance_table, average_attendance, clean_academic_payload, enrich_roster,
    grade_trend, is_at_risk, report_inputs, risk_label, risk_level, risk_summary, task_progress
)
from mentor_ai import (
    MentorAI, LLMServiceError, NOT_CONFIGURED_MESSAGE, SOFTEN_FAILED_MESSAGE, SSE_DONE,
    format_sse_delta, format_sse_error
)
from reports import build_mentor_report_pdf, report_filename
from utils import (
    PasswordManager, TokenManager, login_rate_limiter, logger, validate_schema, first_error,
    student_signup_schema, parent_signup_schema, login_schema, link_code_schema,
    academic_record_schema, task_schema, session_slot_schema, schedule_meeting_schema,
    mentor_note_schema, student_update_schema, reply_schema,
    chat_request_schema, report_request_schema, soften_note_schema,
)
from config import config

# Initialize Flask app with configuration
env = os.environ.get('FLASK_ENV', 'production')
app = Flask(__name__)
config[env].init_app(app)
logger.set_level(app.config['LOG_LEVEL'])

# Initialize rate limiter
disable_rate_limits = (
    env in ('development', 'testing') or
    os.environ.get('DISABLE_RATE_LIMITS', 'False').lower() == 'true'
)
limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    default_limits=[config[env].RATE_LIMIT_DEFAULT],
    enabled=(not disable_rate_limits),
    storage_uri="memory://"
)
login_rate_limiter.max_attempts = config[env].LOGIN_MAX_ATTEMPTS
login_rate_limiter.window = timedelta(minutes=config[env].LOGIN_WINDOW_MINUTES)

# Initialize security headers with Talisman
Talisman(app,
    force_https=config[env].SESSION_COOKIE_SECURE,
    session_cookie_secure=config[env].SESSION_COOKIE_SECURE,
    strict_transport_security=True,
    strict_transport_security_max_age=31536000,
    content_security_policy={
        'default-src': "'self'",
        'script-src': ["'self'", "'unsafe-inline'", "https://cdn.tailwindcss.com", "https://cdn.jsdelivr.net"],
        'style-src': ["'self'", "'unsafe-inline'", "https://cdn.tailwindcss.com"],
        'img-src': ["'self'", "data:", "https:"],
        'connect-src': "'self'",
    },
    referrer_policy='strict-origin-when-cross-origin'
)

# Initialize Flask-Mail
mail = Mail(app)

# Gemini-backed services for chat, reports and note softening
ai = MentorAI(
    api_key=app.config.get('GEMINI_API_KEY'),
    model_name=app.config['GEMINI_MODEL'],
    soften_cache_ttl=app.config['SOFTENED_NOTE_CACHE_TTL'],
)

app.jinja_env.globals.update(risk_label=risk_label)

# ============================================================================
# ROLE HELPERS
# ============================================================================
ROLES = ('student', 'mentor', 'parent')
DASHBOARDS = {
    'student': 'student_dashboard',
    'mentor': 'mentor_dashboard',
    'parent': 'parent_dashboard',
}


def _set_session_identity(uid: str, role: str):
    session['uid'] = uid
    session['role'] = role  # 'student' | 'mentor' | 'parent'
    session.permanent = True


def _dashboard_url(role: str) -> str:
    return url_for(DASHBOARDS[role]) if role in DASHBOARDS else url_for('login')


def require_role(role: str):
    """Gate a page on login and role; other roles land on their own dashboard"""
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            if 'uid' not in session:
                return redirect(url_for('login'))
            current = session.get('role')
            if current != role:
                logger.security_event("role_redirect", user_id=session.get('uid'),
                                      role=current, required=role, path=request.path)
                return redirect(_dashboard_url(current))
            return f(*args, **kwargs)
        return wrapper
    return decorator


require_student = require_role('student')
require_mentor = require_role('mentor')
require_parent = require_role('parent')


def require_api_login(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if 'uid' not in session:
            return jsonify({'error': 'Unauthorized', 'message': 'Login required'}), 401
        return f(*args, **kwargs)
    return wrapper


def _current_profile():
    """Profile for the session user; clears the session when the profile is gone"""
    profile = store.get_profile(session['uid'])
    if not profile:
        logger.warning("profile_missing", user_id=session.get('uid'))
        session.clear()
    return profile


def _slot_to_session_date(slot) -> str:
    return f"{slot['date'].isoformat()}T{slot['time']}:00"


def _form_rows(*names):
    """Zip parallel list inputs (e.g. mid_subject[] / mid_score[]) into dict rows"""
    columns = [request.form.getlist(f'{name}[]') for name in names]
    return [dict(zip(names, values)) for values in zip(*columns)]


# ============================================================================
# AUTH ROUTES
# ============================================================================

@app.route('/')
def index():
    if 'uid' in session and session.get('role') in DASHBOARDS:
        return redirect(_dashboard_url(session['role']))
    return render_template('landing.html')


@app.route('/signup')
def signup_choice():
    return render_template('signup_choice.html')


def _email_taken(email: str) -> bool:
    try:
        auth.get_user_by_email(email)
        return True
    except auth.UserNotFoundError:
        return False


@app.route('/signup/student', methods=['GET', 'POST'])
@limiter.limit(config[env].RATE_LIMIT_SIGNUP)
def signup_student():
    if request.method == 'POST':
        is_valid, result = validate_schema(student_signup_schema, request.form.to_dict())
        if not is_valid:
            flash(first_error(result), 'error')
            return render_template('signup_student.html', form=request.form), 400
        is_strong, msg = PasswordManager.is_strong_password(result['password'])
        if not is_strong:
            flash(f'Password not strong enough: {msg}', 'error')
            return render_template('signup_student.html', form=request.form), 400
        email = result['email'].lower()
        try:
            if _email_taken(email):
                flash('Email already exists. Please login.', 'error')
                return redirect(url_for('login'))
            full_name = f"{result['first_name']} {result['last_name']}"
            user = auth.create_user(email=email, password=result['password'], display_name=full_name)
            store.create_profile(user.uid, {
                'email': email,
                'role': 'student',
                'institution_id': app.config['INSTITUTION_ID'],
                'full_name': full_name,
                'phone': result['phone'],
                'branch': result['branch'],
                'study_year': '',
                'hide_wellness': False,
                'password_hash': PasswordManager.hash_password(result['password']),
            })
            logger.security_event("user_registered", user_id=user.uid, role='student',
                                  ip_address=request.remote_addr)
            flash('Account created! Please login.', 'success')
            return redirect(url_for('login'))
        except Exception as e:
            logger.error("signup_error", error=str(e), email=email, role='student')
            flash('Error creating account: An error occurred during registration', 'error')
            return redirect(url_for('signup_student'))
    return render_template('signup_student.html', form={})


def _issue_link_code(parent: dict) -> bool:
    """Store a fresh 6-digit code and email it to the child's address"""
    code = TokenManager.generate_numeric_code()
    expires_at = datetime.utcnow() + timedelta(minutes=app.config['LINK_CODE_TTL_MINUTES'])
    store.save_link_code(parent['id'], code, parent['child_email'], expires_at)
    msg = Message(
        subject="[Lattice360] Confirm your parent link",
        sender=app.config.get('MAIL_DEFAULT_SENDER'),
        recipients=[parent['child_email']],
        body=f"""
Hello,

{parent.get('full_name', 'A parent')} ({parent.get('email')}) has asked to link their Lattice360
parent account to your student account.

Your verification code is: {code}

The code expires in {app.config['LINK_CODE_TTL_MINUTES']} minutes. If you did not expect this,
ignore this email and let your mentor know.

---
This email was sent by Lattice360.
        """
    )
    try:
        mail.send(msg)
        logger.info("link_code_sent", parent_id=parent['id'])
        return True
    except Exception as e:
        logger.error("link_code_email_error", error=str(e), parent_id=parent['id'])
        return False


@app.route('/signup/parent', methods=['GET', 'POST'])
@limiter.limit(config[env].RATE_LIMIT_SIGNUP)
def signup_parent():
    if request.method == 'POST':
        is_valid, result = validate_schema(parent_signup_schema, request.form.to_dict())
        if not is_valid:
            flash(first_error(result), 'error')
            return render_template('signup_parent.html', form=request.form), 400
        is_strong, msg = PasswordManager.is_strong_password(result['password'])
        if not is_strong:
            flash(f'Password not strong enough: {msg}', 'error')
            return render_template('signup_parent.html', form=request.form), 400
        email = result['email'].lower()
        try:
            if _email_taken(email):
                flash('Email already exists. Please login.', 'error')
                return redirect(url_for('login'))
            user = auth.create_user(email=email, password=result['password'], display_name=result['full_name'])
            parent = store.create_profile(user.uid, {
                'email': email,
                'role': 'parent',
                'institution_id': app.config['INSTITUTION_ID'],
                'full_name': result['full_name'],
                'child_email': result['child_email'].lower(),
                'child_verified': False,
                'password_hash': PasswordManager.hash_password(result['password']),
            })
            logger.security_event("user_registered", user_id=user.uid, role='parent',
                                  ip_address=request.remote_addr)
        except Exception as e:
            logger.error("signup_error", error=str(e), email=email, role='parent')
            flash('Error creating account: An error occurred during registration', 'error')
            return redirect(url_for('signup_parent'))

        _set_session_identity(parent['id'], 'parent')
        if _issue_link_code(parent):
            flash("Account created! We've sent a 6-digit code to your child's student email.", 'success')
        else:
            flash("Account created, but the verification email could not be sent. Use 'Resend code'.", 'error')
        return redirect(url_for('parent_verify'))
    return render_template('signup_parent.html', form={})


@app.route('/signup/parent/verify', methods=['GET', 'POST'])
@require_parent
def parent_verify():
    profile = _current_profile()
    if not profile:
        return redirect(url_for('login'))
    if profile.get('child_verified'):
        return redirect(url_for('parent_dashboard'))

    if request.method == 'POST':
        uid = profile['id']
        is_valid, result = validate_schema(link_code_schema, request.form.to_dict())
        if not is_valid:
            flash(first_error(result), 'error')
            return redirect(url_for('parent_verify'))
        pending = store.get_link_code(uid)
        if not pending:
            flash('No active code. Please request a new one.', 'error')
            return redirect(url_for('parent_verify'))
        if datetime.fromisoformat(pending['expires_at']) < datetime.utcnow():
            store.delete_link_code(uid)
            flash('This code has expired. Please request a new one.', 'error')
            return redirect(url_for('parent_verify'))
        attempts = pending.get('attempts', 0)
        if attempts >= app.config['LINK_CODE_MAX_ATTEMPTS']:
            flash('Too many incorrect attempts. Please request a new code.', 'error')
            return redirect(url_for('parent_verify'))
        if not TokenManager.codes_match(pending['code'], result['code']):
            store.record_link_code_attempt(uid, attempts + 1)
            logger.security_event("link_code_mismatch", user_id=uid, attempts=attempts + 1,
                                  ip_address=request.remote_addr)
            flash('Invalid code. Please try again.', 'error')
            return redirect(url_for('parent_verify'))

        store.update_profile(uid, {
            'child_verified': True,
            'child_email': pending['child_email'],
            'child_linked_at': datetime.utcnow().isoformat(),
        })
        store.delete_link_code(uid)
        logger.security_event("parent_link_verified", user_id=uid)
        flash('Verification complete! Your account is now linked.', 'success')
        return redirect(url_for('parent_dashboard'))

    return render_template('parent_verify.html', profile=profile)


@app.route('/signup/parent/verify/resend', methods=['POST'])
@limiter.limit(config[env].RATE_LIMIT_SIGNUP)
@require_parent
def parent_verify_resend():
    profile = _current_profile()
    if not profile:
        return redirect(url_for('login'))
    if profile.get('child_verified'):
        return redirect(url_for('parent_dashboard'))
    if _issue_link_code(profile):
        flash("A new code has been sent to your child's email.", 'success')
    else:
        flash('The verification email could not be sent. Please try again later.', 'error')
    return redirect(url_for('parent_verify'))


@app.route('/login', methods=['GET', 'POST'])
@limiter.limit(config[env].RATE_LIMIT_LOGIN)
def login():
    if request.method == 'POST':
        client_ip = request.remote_addr
        if not login_rate_limiter.is_allowed(client_ip):
            flash('Too many login attempts. Please try again later.', 'error')
            logger.security_event("login_rate_limited", ip_address=client_ip)
            return redirect(url_for('login'))

        is_valid, result = validate_schema(login_schema, request.form.to_dict())
        if not is_valid:
            flash('Invalid email or password format', 'error')
            return redirect(url_for('login'))
        email = result['email'].lower()
        selected_role = result['role']

        try:
            user = auth.get_user_by_email(email)
            uid = user.uid
            profile = store.get_profile(uid) or {}
            if not PasswordManager.verify_password(result['password'], profile.get('password_hash')):
                login_rate_limiter.record_attempt(client_ip)
                logger.security_event("failed_login", user_id=uid, ip_address=client_ip)
                flash('Invalid email or password', 'error')
                return redirect(url_for('login'))
            if profile.get('role') not in ROLES:
                logger.security_event("login_without_profile", user_id=uid, ip_address=client_ip)
                flash('This account exists but has no role assigned. Please contact your administrator.', 'error')
                return redirect(url_for('login'))

            login_rate_limiter.reset_attempts(client_ip)
            _set_session_identity(uid, profile['role'])
            store.update_profile(uid, {'last_login_at': datetime.utcnow().isoformat()})
            logger.security_event("successful_login", user_id=uid, role=profile['role'], ip_address=client_ip)

            if profile['role'] != selected_role:
                flash(f'Access Denied: This account is registered as "{profile["role"]}", '
                      f'not "{selected_role}". Switching to correct dashboard.', 'warning')
            else:
                flash('Login successful!', 'success')
            return redirect(_dashboard_url(profile['role']))
        except auth.UserNotFoundError:
            login_rate_limiter.record_attempt(client_ip)
            flash('Invalid email or password', 'error')
            return redirect(url_for('login'))
        except Exception as e:
            logger.error("login_error", error=str(e), email=email, ip=client_ip)
            flash('Login error: An error occurred during login', 'error')
            return redirect(url_for('login'))
    return render_template('login.html', role=request.args.get('role', 'student'))


@app.route('/logout')
def logout():
    session.clear()
    flash('Logged out successfully', 'success')
    return redirect(url_for('login'))


# ============================================================================
# STUDENT PORTAL
# ============================================================================
STUDENT_TABS = ('profile', 'academics', 'tasks', 'appointments', 'ai', 'wellness')


@app.route('/student')
@require_student
def student_dashboard():
    profile = _current_profile()
    if not profile:
        return redirect(url_for('login'))
    uid = profile['id']
    tab = request.args.get('tab', 'profile')
    if tab not in STUDENT_TABS:
        tab = 'profile'

    record = store.get_academic_record(uid)
    tasks = store.list_tasks_for_student(uid)
    return render_template(
        'student_dashboard.html',
        tab=tab,
        profile=profile,
        record=record,
        overall_attendance=average_attendance((record or {}).get('attendance_data')),
        attendance=attendance_table(record),
        tasks=tasks,
        progress=task_progress(tasks),
        sessions=store.list_sessions(uid),
        notes=store.list_notes(uid, include_confidential=False),
        updates=store.list_updates(uid),
        ai_available=ai.ai_available,
    )


@app.route('/student/tasks/<task_id>/toggle', methods=['POST'])
@require_student
def student_toggle_task(task_id):
    uid = session['uid']
    task = store.get_task(task_id)
    if not task or task.get('student_id') != uid:
        abort(404)
    completed = not task.get('is_completed', False)
    store.set_task_completed(task_id, completed)
    logger.info("task_toggled", user_id=uid, task_id=task_id, is_completed=completed)
    if request.is_json:
        return jsonify(ok=True, is_completed=completed)
    return redirect(url_for('student_dashboard', tab='tasks'))


@app.route('/student/sessions', methods=['POST'])
@require_student
def student_book_session():
    uid = session['uid']
    is_valid, result = validate_schema(session_slot_schema, request.form.to_dict())
    if not is_valid:
        flash('Pick a date and time.', 'error')
        return redirect(url_for('student_dashboard', tab='appointments'))
    try:
        session_id = store.create_session(
            student_id=uid,
            mentor_id=store.first_mentor_id(),
            session_date=_slot_to_session_date(result),
            status=store.SESSION_REQUESTED,
        )
        logger.info("session_requested", user_id=uid, session_id=session_id)
        flash('Session requested!', 'success')
    except Exception as e:
        logger.error("session_booking_error", error=str(e), user_id=uid)
        flash('Failed to book session. Please try again.', 'error')
    return redirect(url_for('student_dashboard', tab='appointments'))


@app.route('/student/sessions/<session_id>/reschedule', methods=['POST'])
@require_student
def student_reschedule_session(session_id):
    uid = session['uid']
    mentor_session = store.get_session(session_id)
    if not mentor_session or mentor_session.get('student_id') != uid:
        abort(404)
    if mentor_session.get('status') != store.SESSION_RESCHEDULED:
        flash('Only sessions your mentor rescheduled can be moved.', 'error')
        return redirect(url_for('student_dashboard', tab='appointments'))
    is_valid, result = validate_schema(session_slot_schema, request.form.to_dict())
    if not is_valid:
        flash('Fill date & time.', 'error')
        return redirect(url_for('student_dashboard', tab='appointments'))
    store.update_session(session_id, {
        'session_date': _slot_to_session_date(result),
        'status': store.SESSION_REQUESTED,
        'rescheduled_by': 'student',
    })
    logger.info("session_rescheduled", user_id=uid, session_id=session_id, by='student')
    flash('New time requested!', 'success')
    return redirect(url_for('student_dashboard', tab='appointments'))


@app.route('/student/updates', methods=['POST'])
@require_student
def student_submit_update():
    uid = session['uid']
    is_valid, result = validate_schema(student_update_schema, request.form.to_dict())
    if not is_valid:
        flash('Write something first.', 'error')
        return redirect(url_for('student_dashboard', tab='wellness'))
    try:
        store.create_update(uid, result['content'])
        flash('Update sent!', 'success')
    except Exception as e:
        logger.error("student_update_error", error=str(e), user_id=uid)
        flash('Failed to send update. Please try again.', 'error')
    return redirect(url_for('student_dashboard', tab='wellness'))


@app.route('/student/wellness-consent', methods=['POST'])
@require_student
def student_toggle_wellness():
    profile = _current_profile()
    if not profile:
        return redirect(url_for('login'))
    hide = not profile.get('hide_wellness', False)
    store.update_profile(profile['id'], {'hide_wellness': hide})
    logger.info("wellness_consent_changed", user_id=profile['id'], hide_wellness=hide)
    flash('Parents can no longer see wellness updates.' if hide else 'Parents can now see wellness updates.',
          'success')
    return redirect(url_for('student_dashboard', tab='profile'))


# ============================================================================
# MENTOR PORTAL
# ============================================================================
MENTOR_TABS = ('roster', 'academic', 'tasks', 'sessions', 'notes', 'updates')


def _student_or_404(student_id: str) -> dict:
    student = store.get_profile(student_id)
    if not student or student.get('role') != 'student':
        abort(404)
    return student


@app.route('/mentor')
@require_mentor
def mentor_dashboard():
    profile = _current_profile()
    if not profile:
        return redirect(url_for('login'))
    tab = request.args.get('tab', 'roster')
    if tab not in MENTOR_TABS:
        tab = 'roster'
    risk_filter = request.args.get('risk', 'All')
    if risk_filter not in RISK_FILTERS:
        risk_filter = 'All'
    search = request.args.get('q', '')

    students = store.list_students()
    records = store.list_academic_records()
    selected_id = request.args.get('student', '')
    selected_record = next((r for r in records if r.get('student_id') == selected_id), None)

    return render_template(
        'mentor_dashboard.html',
        tab=tab,
        profile=profile,
        students=students,
        student_names={s['id']: s.get('full_name') or s.get('email') for s in students},
        roster=enrich_roster(students, records, risk_filter, search),
        summary=risk_summary(students, records),
        risk_filter=risk_filter,
        risk_filters=RISK_FILTERS,
        search=search,
        selected_id=selected_id,
        selected_record=selected_record,
        sessions=store.list_sessions(),
        notes=store.list_notes(),
        updates=store.list_updates(),
        assigned_tasks=store.list_tasks_by_mentor(profile['id']),
    )


@app.route('/mentor/academic', methods=['POST'])
@require_mentor
def mentor_save_academic():
    data = {
        'student_id': request.form.get('student_id', ''),
        'cgpa': request.form.get('cgpa', ''),
        'sgpa': request.form.get('sgpa', ''),
    }
    is_valid, result = validate_schema(academic_record_schema, data)
    if not is_valid:
        flash(f'Select a student and enter CGPA. ({first_error(result)})', 'error')
        return redirect(url_for('mentor_dashboard', tab='academic', student=data['student_id']))
    _student_or_404(result['student_id'])

    mid_terms = [{'subject': r['mid_subject'], 'score': r['mid_score']}
                 for r in _form_rows('mid_subject', 'mid_score')]
    attendance = [{'subject': r['att_subject'], 'total_periods': r['att_total'], 'attended': r['att_attended']}
                  for r in _form_rows('att_subject', 'att_total', 'att_attended')]
    payload = clean_academic_payload(result['student_id'], result['cgpa'], result['sgpa'], mid_terms, attendance)
    invalid = [a['subject'] for a in payload['attendance_data'] if a['attended'] > a['total_periods']]
    if invalid:
        flash(f"Attended periods exceed total for: {', '.join(invalid)}", 'error')
        return redirect(url_for('mentor_dashboard', tab='academic', student=result['student_id']))
    try:
        store.upsert_academic_record(payload)
        logger.info("academic_record_saved", mentor_id=session['uid'], student_id=result['student_id'],
                    risk=risk_level(average_attendance(payload['attendance_data'])))
        flash('Academic record saved!', 'success')
    except Exception as e:
        logger.error("academic_record_error", error=str(e), student_id=result['student_id'])
        flash(f'Save failed: {str(e)}', 'error')
    return redirect(url_for('mentor_dashboard', tab='academic', student=result['student_id']))


@app.route('/mentor/tasks', methods=['POST'])
@require_mentor
def mentor_assign_task():
    mentor_id = session['uid']
    is_valid, result = validate_schema(task_schema, request.form.to_dict())
    if not is_valid:
        flash(first_error(result), 'error')
        return redirect(url_for('mentor_dashboard', tab='tasks'))
    if result['assign_all']:
        student_ids = [s['id'] for s in store.list_students()]
        if not student_ids:
            flash('No students to assign to.', 'error')
            return redirect(url_for('mentor_dashboard', tab='tasks'))
    else:
        _student_or_404(result['student_id'])
        student_ids = [result['student_id']]
    try:
        if result['assign_all']:
            count = store.create_tasks_for_students(student_ids, mentor_id, result['title'], result['description'])
            flash(f'Task assigned to all {count} students!', 'success')
        else:
            store.create_task(student_ids[0], mentor_id, result['title'], result['description'])
            flash('Task assigned!', 'success')
        logger.info("task_assigned", mentor_id=mentor_id, assign_all=result['assign_all'], students=len(student_ids))
    except Exception as e:
        logger.error("task_assign_error", error=str(e), mentor_id=mentor_id)
        flash(f'Failed: {str(e)}', 'error')
    return redirect(url_for('mentor_dashboard', tab='tasks'))


@app.route('/mentor/sessions/<session_id>/status', methods=['POST'])
@require_mentor
def mentor_update_session(session_id):
    mentor_session = store.get_session(session_id)
    if not mentor_session:
        abort(404)
    status = request.form.get('status', '')
    if status not in (store.SESSION_CONFIRMED, store.SESSION_NOT_AVAILABLE, store.SESSION_RESCHEDULED):
        abort(400)
    if mentor_session.get('status') != store.SESSION_REQUESTED:
        flash('Only pending requests can be answered.', 'error')
        return redirect(url_for('mentor_dashboard', tab='sessions'))

    fields = {'status': status}
    if status == store.SESSION_RESCHEDULED:
        is_valid, result = validate_schema(session_slot_schema, request.form.to_dict())
        if not is_valid:
            flash('Pick a new date and time to reschedule.', 'error')
            return redirect(url_for('mentor_dashboard', tab='sessions'))
        fields.update(session_date=_slot_to_session_date(result), rescheduled_by='mentor')
    store.update_session(session_id, fields)
    logger.info("session_status_changed", mentor_id=session['uid'], session_id=session_id, status=status)
    flash(f'Session marked {status.replace("_", " ")}.', 'success')
    return redirect(url_for('mentor_dashboard', tab='sessions'))


@app.route('/mentor/sessions', methods=['POST'])
@require_mentor
def mentor_schedule_meeting():
    is_valid, result = validate_schema(schedule_meeting_schema, request.form.to_dict())
    if not is_valid:
        flash('Select a student and pick a date and time.', 'error')
        return redirect(url_for('mentor_dashboard', tab='sessions'))
    _student_or_404(result['student_id'])
    store.create_session(
        student_id=result['student_id'],
        mentor_id=session['uid'],
        session_date=_slot_to_session_date(result),
        status=store.SESSION_CONFIRMED,
    )
    logger.info("meeting_scheduled", mentor_id=session['uid'], student_id=result['student_id'])
    flash('Meeting scheduled!', 'success')
    return redirect(url_for('mentor_dashboard', tab='sessions'))


@app.route('/mentor/notes', methods=['POST'])
@require_mentor
def mentor_save_note():
    is_valid, result = validate_schema(mentor_note_schema, request.form.to_dict())
    if not is_valid:
        flash('Select a student and enter note content.', 'error')
        return redirect(url_for('mentor_dashboard', tab='notes'))
    _student_or_404(result['student_id'])
    store.create_note(result['student_id'], session['uid'], result['note_content'], result['is_confidential'])
    logger.info("mentor_note_saved", mentor_id=session['uid'], student_id=result['student_id'],
                is_confidential=result['is_confidential'])
    flash('Note saved!', 'success')
    return redirect(url_for('mentor_dashboard', tab='notes'))


@app.route('/mentor/notes/<note_id>/delete', methods=['POST'])
@require_mentor
def mentor_delete_note(note_id):
    note = store.get_note(note_id)
    if not note:
        abort(404)
    if note.get('mentor_id') != session['uid']:
        abort(403)
    store.delete_note(note_id)
    flash('Note deleted.', 'success')
    return redirect(url_for('mentor_dashboard', tab='notes'))


@app.route('/mentor/updates/<update_id>/reply', methods=['POST'])
@require_mentor
def mentor_reply_update(update_id):
    if not store.get_update(update_id):
        abort(404)
    is_valid, result = validate_schema(reply_schema, request.form.to_dict())
    if not is_valid:
        flash('Write a reply first.', 'error')
        return redirect(url_for('mentor_dashboard', tab='updates'))
    store.reply_to_update(update_id, result['reply'])
    logger.info("student_update_replied", mentor_id=session['uid'], update_id=update_id)
    flash('Reply sent!', 'success')
    return redirect(url_for('mentor_dashboard', tab='updates'))


def _pdf_response(pdf_bytes: bytes, filename: str):
    return send_file(BytesIO(pdf_bytes), mimetype='application/pdf', as_attachment=True, download_name=filename)


@app.route('/mentor/report.pdf')
@require_mentor
def mentor_report_pdf():
    profile = _current_profile()
    if not profile:
        return redirect(url_for('login'))
    student_id = request.args.get('student_id')
    roster = enrich_roster(store.list_students(), store.list_academic_records())
    student = None
    if student_id:
        roster = [s for s in roster if s['id'] == student_id]
        if not roster:
            abort(404)
        student = roster[0]
    pdf = build_mentor_report_pdf(profile.get('full_name'), roster, store.list_notes(), date.today())
    logger.info("pdf_report_generated", mentor_id=profile['id'], student_id=student_id, students=len(roster))
    return _pdf_response(pdf, report_filename(student))


@app.route('/mentor/students/<student_id>/ai-report')
@require_mentor
def mentor_ai_report(student_id):
    profile = _current_profile()
    if not profile:
        return redirect(url_for('login'))
    student = _student_or_404(student_id)
    data = report_inputs(
        student,
        store.get_academic_record(student_id),
        store.list_tasks_for_student(student_id),
        store.list_sessions(student_id),
        store.list_updates(student_id),
        include_wellness=not student.get('hide_wellness', False),
    )
    try:
        summary = ai.generate_report(data)
    except LLMServiceError as e:
        flash(f'Report generation failed: {str(e)}', 'error')
        return redirect(url_for('mentor_dashboard', tab='roster'))

    if request.args.get('download'):
        roster = enrich_roster([student], store.list_academic_records())
        pdf = build_mentor_report_pdf(profile.get('full_name'), roster, store.list_notes(student_id),
                                      date.today(), ai_summary=summary)
        return _pdf_response(pdf, report_filename(student))
    return render_template('mentor_ai_report.html', profile=profile, student=student,
                           summary=summary, ai_available=ai.ai_available)


# ============================================================================
# PARENT PORTAL
# ============================================================================
PARENT_TABS = ('trends', 'attendance', 'feedback')


def _linked_child(parent: dict):
    """The verified child profile for a parent, or None"""
    if not parent.get('child_email') or not parent.get('child_verified'):
        return None
    child = store.get_profile_by_email(parent['child_email'])
    if not child or child.get('role') != 'student':
        return None
    return child


def _softened(notes):
    softened = []
    for note in notes:
        try:
            content = ai.soften_note(note.get('note_content', ''))
        except Exception as e:
            logger.warning("soften_note_error", error=str(e), note_id=note.get('id'))
            content = note.get('note_content', '')
        softened.append({**note, 'note_content': content})
    return softened


@app.route('/parent')
@require_parent
def parent_dashboard():
    profile = _current_profile()
    if not profile:
        return redirect(url_for('login'))
    tab = request.args.get('tab', 'trends')
    if tab not in PARENT_TABS:
        tab = 'trends'

    child = _linked_child(profile)
    context = {
        'tab': tab,
        'profile': profile,
        'child': child,
        'pending_verification': bool(profile.get('child_email')) and not profile.get('child_verified'),
        'record': None,
        'attendance': [],
        'at_risk': False,
        'trend': [],
        'notes': [],
        'updates': [],
        'wellness_hidden': False,
    }
    if child:
        record = store.get_academic_record(child['id'])
        context.update(
            record=record,
            overall_attendance=average_attendance((record or {}).get('attendance_data')),
            attendance=attendance_table(record),
            at_risk=is_at_risk(record),
            trend=grade_trend(record),
            notes=_softened(store.list_notes(child['id'], include_confidential=False)),
            wellness_hidden=bool(child.get('hide_wellness')),
        )
        if not child.get('hide_wellness'):
            context['updates'] = store.list_updates(child['id'])
    return render_template('parent_dashboard.html', **context)


# ============================================================================
# LLM API
# ============================================================================

@app.route('/api/ai-chat', methods=['POST'])
@limiter.limit(config[env].RATE_LIMIT_AI)
@require_api_login
def api_ai_chat():
    """Stream a chat completion as server-sent events"""
    try:
        body = request.get_json(silent=True)
        if body is None:
            return jsonify({'error': 'Request body must be JSON'}), 400
        is_valid, result = validate_schema(chat_request_schema, body)
        if not is_valid:
            return jsonify({'error': 'Invalid messages', 'details': result}), 400
        logger.info("ai_chat_request", user_id=session['uid'], ai_available=ai.ai_available)
        if not ai.ai_available:
            return jsonify({'error': NOT_CONFIGURED_MESSAGE}), 503
        if not result['messages']:
            return jsonify({'error': 'At least one message is required'}), 400

        try:
            deltas = ai.stream_chat(result['messages'])
        except LLMServiceError as e:
            return jsonify({'error': f'LLM API error: {str(e)}'}), 502

        def relay():
            try:
                for text in deltas:
                    yield format_sse_delta(text)
            except Exception as e:
                logger.error("ai_chat_stream_interrupted", error=str(e))
                yield format_sse_error('The response was interrupted. Please try again.')
            yield SSE_DONE

        return Response(
            stream_with_context(relay()),
            mimetype='text/event-stream',
            headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'}
        )
    except Exception as e:
        logger.error("ai_chat_error", error=str(e), traceback=traceback.format_exc())
        return jsonify({'error': str(e)}), 500


@app.route('/api/generate-report', methods=['POST'])
@limiter.limit(config[env].RATE_LIMIT_AI)
@require_api_login
def api_generate_report():
    try:
        body = request.get_json(silent=True)
        if body is None:
            return jsonify({'error': 'Request body must be JSON'}), 400
        is_valid, result = validate_schema(report_request_schema, body)
        if not is_valid:
            return jsonify({'error': 'Invalid report data', 'details': result}), 400
        logger.info("generate_report_request", user_id=session['uid'], ai_available=ai.ai_available)
        try:
            summary = ai.generate_report(result)
        except LLMServiceError as e:
            return jsonify({'error': f'LLM API error: {str(e)}'}), 502
        return jsonify({'summary': summary})
    except Exception as e:
        logger.error("generate_report_error", error=str(e), traceback=traceback.format_exc())
        return jsonify({'error': str(e)}), 500


@app.route('/api/soften-note', methods=['POST'])
@limiter.limit(config[env].RATE_LIMIT_AI)
@require_api_login
def api_soften_note():
    try:
        is_valid, result = validate_schema(soften_note_schema, request.get_json(silent=True) or {})
        note = (result.get('note') or '') if is_valid else ''
        if not note.strip():
            return jsonify({'softenedNote': ''})
        return jsonify({'softenedNote': ai.soften_note(note)})
    except Exception as e:
        logger.error("soften_note_error", error=str(e))
        return jsonify({'softenedNote': SOFTEN_FAILED_MESSAGE}), 500


# ============================================================================
# CLI
# ============================================================================

@app.cli.command('create-mentor')
@click.argument('email')
@click.argument('full_name')
@click.password_option()
def create_mentor(email, full_name, password):
    """Provision a mentor account (mentors cannot self-register)."""
    is_strong, msg = PasswordManager.is_strong_password(password)
    if not is_strong:
        raise click.ClickException(msg)
    email = email.strip().lower()
    if _email_taken(email):
        raise click.ClickException(f'{email} already has an account')
    user = auth.create_user(email=email, password=password, display_name=full_name)
    store.create_profile(user.uid, {
        'email': email,
        'role': 'mentor',
        'institution_id': app.config['INSTITUTION_ID'],
        'full_name': full_name,
        'password_hash': PasswordManager.hash_password(password),
    })
    logger.security_event("mentor_provisioned", user_id=user.uid)
    click.echo(f'Mentor {full_name} <{email}> created.')


# ============================================================================
# ERROR HANDLERS
# ============================================================================

def _wants_json() -> bool:
    return request.is_json or request.path.startswith('/api/')


@app.errorhandler(400)
def bad_request(error):
    """Handle bad request errors"""
    logger.warning("bad_request", error=str(error), path=request.path)
    if _wants_json():
        return jsonify({'error': 'Bad request', 'message': str(error)}), 400
    return render_template('error.html', error_code=400, error_message="Bad request"), 400


@app.errorhandler(401)
def unauthorized(error):
    """Handle unauthorized errors"""
    if _wants_json():
        return jsonify({'error': 'Unauthorized', 'message': 'Login required'}), 401
    return redirect(url_for('login'))


@app.errorhandler(403)
def forbidden(error):
    """Handle forbidden errors"""
    logger.security_event("forbidden_access", user_id=session.get('uid'), ip_address=request.remote_addr)
    if _wants_json():
        return jsonify({'error': 'Forbidden', 'message': 'Access denied'}), 403
    return render_template('error.html', error_code=403, error_message="Access denied"), 403


@app.errorhandler(404)
def not_found(error):
    """Handle 404 errors"""
    logger.warning("page_not_found", path=request.path, ip=request.remote_addr)
    if _wants_json():
        return jsonify({'error': 'Not found', 'message': 'Resource not found'}), 404
    return render_template('error.html', error_code=404, error_message="Page not found"), 404


@app.errorhandler(429)
def rate_limit_handler(error):
    """Handle rate limit exceeded"""
    logger.security_event("rate_limit_exceeded", user_id=session.get('uid'), ip_address=request.remote_addr)
    if _wants_json():
        return jsonify({'error': 'Too many requests', 'message': 'Rate limit exceeded. Please try again later.'}), 429
    return render_template('error.html', error_code=429, error_message="Too many requests. Please try again later."), 429


@app.errorhandler(500)
def internal_error(error):
    """Handle internal server errors"""
    logger.error("internal_server_error", error=str(error), path=request.path, traceback=traceback.format_exc())
    if _wants_json():
        return jsonify({'error': 'Internal server error', 'message': 'Something went wrong'}), 500
    return render_template('error.html', error_code=500, error_message="Internal server error"), 500


# ============================================================================
# REQUEST LOGGING
# ============================================================================

@app.before_request
def log_request():
    """Log all incoming requests"""
    logger.debug("request_started",
                 method=request.method,
                 path=request.path,
                 ip=request.remote_addr,
                 user_agent=str(request.user_agent))


@app.after_request
def log_response(response):
    """Log all responses"""
    logger.info("request_completed",
                method=request.method,
                path=request.path,
                status_code=response.status_code,
                ip=request.remote_addr)
    return response


if __name__ == '__main__':
    env = os.environ.get('FLASK_ENV', 'production')
    debug = env == 'development'
    logger.info("application_startup", environment=env, debug=debug)
    app.run(debug=debug, host='0.0.0.0', port=5000)
