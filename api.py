"""
Examinee-facing API: login/logout, exam start/submit, own results and
wrong-answer downloads.
"""

from flask import Blueprint, g, jsonify, request

import auth
import exam
import reports
from auth import ROLE_ADMIN, generate_csrf_token, get_store, identity_required, validate_csrf
from errors import InvalidInput

api = Blueprint('api', __name__, url_prefix='/api')

UNSAFE_METHODS = ('POST', 'PUT', 'PATCH', 'DELETE')
CSRF_EXEMPT = {'api.login'}


@api.before_request
def csrf_protect():
    if request.method in UNSAFE_METHODS and request.endpoint not in CSRF_EXEMPT:
        validate_csrf()


def json_body():
    """Request body as a dict (JSON, or form fields as a fallback)."""
    body = request.get_json(silent=True)
    if body is None:
        body = request.form.to_dict() if request.form else {}
    if not isinstance(body, dict):
        raise InvalidInput('Request body must be a JSON object.')
    return body


def identity_payload(identity):
    return {
        'empId': identity.account_id,
        'name': identity.name,
        'role': identity.role,
        'team': identity.team,
        'home': '/admin' if identity.role == ROLE_ADMIN else '/exam',
    }


# ==================== AUTH ROUTES ====================

@api.route('/auth/login', methods=['POST'])
def login():
    body = json_body()
    emp_id = str(body.get('emp_id') or body.get('empId') or '').strip()[:100]
    password = str(body.get('password') or '')
    if not emp_id or not password or len(password) > 500:
        raise InvalidInput('Please enter employee id and password.')

    identity = auth.login(get_store(), emp_id, password, request.remote_addr)
    return jsonify({'ok': True, **identity_payload(identity), 'csrfToken': generate_csrf_token()})


@api.route('/auth/logout', methods=['POST'])
def logout():
    auth.logout()
    return jsonify({'ok': True})


@api.route('/auth/me')
@identity_required
def me():
    return jsonify({'ok': True, **identity_payload(g.identity), 'csrfToken': generate_csrf_token()})


# ==================== EXAM ROUTES ====================

@api.route('/exam/start', methods=['POST'])
@identity_required
def start_exam():
    started = exam.start_attempt(get_store(), g.identity)
    return jsonify({'ok': True, **started})


@api.route('/exam/submit', methods=['POST'])
@identity_required
def submit_exam():
    body = json_body()
    attempt_id = body.get('attemptId', body.get('attempt_id'))
    answers = body.get('answers', body.get('answerMap'))
    is_auto = bool(body.get('isAuto', False))
    result = exam.submit_attempt(get_store(), g.identity, attempt_id, answers, auto=is_auto)
    return jsonify({'ok': True, **result})


# ==================== RESULT ROUTES ====================

@api.route('/result/<int:attempt_id>')
@identity_required
def attempt_result(attempt_id):
    return jsonify({'ok': True, **reports.get_attempt_result(get_store(), g.identity, attempt_id)})


@api.route('/result/<int:attempt_id>/wrong.csv')
@identity_required
def attempt_wrong_csv(attempt_id):
    rows = reports.attempt_wrong_rows(get_store(), g.identity, attempt_id)
    return reports.wrong_answers_csv(rows, f'wrong_attempt_{attempt_id}.csv')


@api.route('/me/wrong.csv')
@identity_required
def my_wrong_csv():
    emp_id = g.identity.account_id
    rows = reports.cumulative_wrong_rows(get_store(), g.identity, emp_id)
    ranking = request.args.get('view') == 'ranking'
    suffix = 'most_missed' if ranking else 'wrong'
    return reports.wrong_answers_csv(rows, f'{emp_id}_{suffix}.csv', ranking=ranking)
