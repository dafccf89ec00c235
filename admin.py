"""
Administrator API: accounts, question bank, results and analytics.
Every route is scoped to the calling admin's team.
"""

import logging

from flask import Blueprint, g, jsonify, request

import config
import reports
from api import UNSAFE_METHODS, json_body
from auth import ROLES, admin_required, get_store, hash_password, validate_csrf
from errors import Forbidden, InvalidInput, NotFound
from exam import STATUS_IN_PROGRESS, STATUS_SUBMITTED, isoformat

logger = logging.getLogger(__name__)

admin = Blueprint('admin', __name__, url_prefix='/api/admin')


@admin.before_request
def csrf_protect():
    if request.method in UNSAFE_METHODS:
        validate_csrf()


def _to_bool(value, default=None):
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('1', 'true', 'y', 'yes', 'on'):
        return True
    if text in ('0', 'false', 'n', 'no', 'off'):
        return False
    return default


def _require_bool(body, key):
    value = _to_bool(body.get(key))
    if value is None:
        raise InvalidInput(f'"{key}" must be true or false.')
    return value


def _validate_password(password):
    if not password or len(password) < config.MIN_PASSWORD_LENGTH or len(password) > 500:
        raise InvalidInput(f'Password must be {config.MIN_PASSWORD_LENGTH}-500 characters.')
    return password


# ==================== ACCOUNTS ====================

def account_payload(account):
    return {
        'empId': account['emp_id'],
        'name': account.get('name'),
        'role': account['role'],
        'team': account['team'],
        'isActive': account['is_active'],
        'createdAt': isoformat(account.get('created_at')),
    }


@admin.route('/accounts')
@admin_required
def list_accounts():
    rows = get_store().list_accounts(g.identity.team)
    return jsonify({'ok': True, 'rows': [account_payload(a) for a in rows]})


@admin.route('/accounts', methods=['POST'])
@admin_required
def create_account():
    body = json_body()
    emp_id = str(body.get('emp_id') or body.get('empId') or '').strip()
    name = str(body.get('name') or '').strip()[:255] or None
    role = str(body.get('role') or 'examinee').strip()
    password = str(body.get('password') or '')

    if not emp_id or len(emp_id) > 100:
        raise InvalidInput('Please enter a valid employee id.')
    if role not in ROLES:
        raise InvalidInput(f'role must be one of: {", ".join(ROLES)}.')
    _validate_password(password)

    account = get_store().create_account(emp_id, name, role, g.identity.team, hash_password(password))
    logger.info('Admin %s created account %s (%s)', g.identity.account_id, emp_id, role)
    return jsonify({'ok': True, 'row': account_payload(account)}), 201


@admin.route('/accounts/<emp_id>/active', methods=['POST'])
@admin_required
def set_account_active(emp_id):
    is_active = _require_bool(json_body(), 'active')
    reports.check_account_access(get_store(), g.identity, emp_id)
    if emp_id == g.identity.account_id and not is_active:
        raise InvalidInput('You cannot deactivate your own account.')
    get_store().set_account_active(emp_id, is_active)
    logger.info('Admin %s set %s active=%s', g.identity.account_id, emp_id, is_active)
    return jsonify({'ok': True, 'empId': emp_id, 'isActive': is_active})


@admin.route('/accounts/<emp_id>/password', methods=['POST'])
@admin_required
def reset_password(emp_id):
    password = _validate_password(str(json_body().get('password') or ''))
    reports.check_account_access(get_store(), g.identity, emp_id)
    get_store().set_account_password(emp_id, hash_password(password))
    logger.info('Admin %s reset the password of %s', g.identity.account_id, emp_id)
    return jsonify({'ok': True, 'empId': emp_id})


@admin.route('/accounts/<emp_id>/wrong')
@admin_required
def account_wrong_answers(emp_id):
    rows = reports.cumulative_wrong_rows(get_store(), g.identity, emp_id)
    return jsonify({
        'ok': True,
        'empId': emp_id,
        'count': len(rows),
        'wrongQuestions': rows,
        'mostMissed': reports.most_missed(rows),
    })


@admin.route('/accounts/<emp_id>/wrong.csv')
@admin_required
def account_wrong_csv(emp_id):
    rows = reports.cumulative_wrong_rows(get_store(), g.identity, emp_id)
    ranking = request.args.get('view') == 'ranking'
    suffix = 'most_missed' if ranking else 'wrong'
    return reports.wrong_answers_csv(rows, f'{emp_id}_{suffix}.csv', ranking=ranking)


# ==================== QUESTIONS ====================

def question_payload(q):
    return {
        'id': q['id'],
        'team': q['team'],
        'content': q['content'],
        'choices': q['choices'],
        'correctIndex': q['correct_index'],
        'points': q['points'],
        'isActive': q['is_active'],
    }


def question_fields(body):
    """Validate a question body. Blank choices are dropped and the correct index remapped."""
    content = str(body.get('content') or '').strip()
    if not content or len(content) > 5000:
        raise InvalidInput('Please enter the question text (max 5000 characters).')

    raw_choices = body.get('choices')
    if isinstance(raw_choices, str):
        raw_choices = raw_choices.split('\n')
    if not isinstance(raw_choices, list):
        raise InvalidInput('choices must be a list of strings.')

    # which positions have non-empty text
    choice_indices = [i for i, c in enumerate(raw_choices) if c is not None and str(c).strip()]
    choices = [str(raw_choices[i]).strip()[:500] for i in choice_indices]
    if len(choices) < config.MIN_CHOICES:
        raise InvalidInput(f'A question needs at least {config.MIN_CHOICES} non-empty choices.')

    raw_correct = body.get('correct_index', body.get('correctIndex'))
    try:
        correct = int(raw_correct)
    except (TypeError, ValueError):
        raise InvalidInput('correct_index must be an integer.')
    if correct not in choice_indices:
        raise InvalidInput('correct_index must point at a non-empty choice.')
    correct_index = choice_indices.index(correct)

    raw_points = body.get('points')
    if raw_points is None or raw_points == '':
        raw_points = 1
    if isinstance(raw_points, (bool, float)):
        raise InvalidInput('points must be an integer.')
    try:
        points = int(raw_points)
    except (TypeError, ValueError):
        raise InvalidInput('points must be an integer.')
    points = max(1, min(config.MAX_POINTS, points))

    return content, choices, correct_index, points


def _team_question(question_id):
    q = get_store().get_question(question_id)
    if q is None:
        raise NotFound(f'Question {question_id} not found.')
    if q['team'] != g.identity.team:
        raise Forbidden('This question belongs to another team.')
    return q


@admin.route('/questions')
@admin_required
def list_questions():
    active_only = _to_bool(request.args.get('active'), False)
    rows = get_store().list_questions(g.identity.team, active_only=active_only)
    return jsonify({'ok': True, 'rows': [question_payload(q) for q in rows]})


@admin.route('/questions', methods=['POST'])
@admin_required
def create_question():
    body = json_body()
    content, choices, correct_index, points = question_fields(body)
    is_active = _to_bool(body.get('is_active', body.get('isActive')), True)
    q = get_store().create_question(g.identity.team, content, choices, correct_index, points, is_active)
    return jsonify({'ok': True, 'row': question_payload(q)}), 201


@admin.route('/questions/<int:question_id>')
@admin_required
def question_detail(question_id):
    return jsonify({'ok': True, 'row': question_payload(_team_question(question_id))})


@admin.route('/questions/<int:question_id>', methods=['PUT'])
@admin_required
def update_question(question_id):
    _team_question(question_id)
    content, choices, correct_index, points = question_fields(json_body())
    store = get_store()
    store.update_question(question_id, content, choices, correct_index, points)
    return jsonify({'ok': True, 'row': question_payload(store.get_question(question_id))})


@admin.route('/questions/<int:question_id>/active', methods=['POST'])
@admin_required
def set_question_active(question_id):
    is_active = _require_bool(json_body(), 'active')
    _team_question(question_id)
    get_store().set_question_active(question_id, is_active)
    return jsonify({'ok': True, 'id': question_id, 'isActive': is_active})


@admin.route('/questions/clear', methods=['POST'])
@admin_required
def clear_questions():
    if _to_bool(json_body().get('confirm')) is not True:
        raise InvalidInput('Set "confirm": true to delete every question of your team.')
    deleted = get_store().clear_questions(g.identity.team)
    logger.warning('Admin %s cleared %d questions of team %s', g.identity.account_id, deleted, g.identity.team)
    return jsonify({'ok': True, 'deleted': deleted})


# ==================== RESULTS ====================

def _team_attempts(default_limit):
    emp_id = (request.args.get('emp_id') or '').strip() or None
    status = (request.args.get('status') or '').strip() or None
    if status and status not in (STATUS_IN_PROGRESS, STATUS_SUBMITTED):
        raise InvalidInput('status must be in_progress or submitted.')
    limit = request.args.get('limit', default_limit, type=int)
    limit = max(1, min(500, limit))
    return get_store().list_attempts(g.identity.team, emp_id=emp_id, status=status, limit=limit)


@admin.route('/results')
@admin_required
def list_results():
    rows = _team_attempts(100)
    return jsonify({'ok': True, 'rows': [reports.attempt_metadata(a) for a in rows]})


@admin.route('/results.csv')
@admin_required
def results_csv():
    rows = reports.results_rows(_team_attempts(500))
    return reports.csv_response(reports.RESULTS_CSV_HEADER, rows, f'results_team_{g.identity.team}.csv')


@admin.route('/results/summary')
@admin_required
def results_summary():
    rows = get_store().attempt_summary(g.identity.team)
    return jsonify({
        'ok': True,
        'rows': [
            {
                'empId': r['emp_id'],
                'attempts': r['attempts'],
                'maxScore': r['max_score'],
                'avgScore': r['avg_score'],
                'latestSubmittedAt': isoformat(r['latest_submitted_at']),
            }
            for r in rows
        ],
    })


@admin.route('/results/<int:attempt_id>')
@admin_required
def result_detail(attempt_id):
    return jsonify({'ok': True, **reports.get_attempt_result(get_store(), g.identity, attempt_id)})


@admin.route('/results/<int:attempt_id>', methods=['DELETE'])
@admin_required
def delete_result(attempt_id):
    store = get_store()
    reports.load_visible_attempt(store, g.identity, attempt_id)
    store.delete_attempt(attempt_id)
    logger.info('Admin %s deleted attempt %s', g.identity.account_id, attempt_id)
    return jsonify({'ok': True, 'deleted': attempt_id})


@admin.route('/results/<int:attempt_id>/wrong.csv')
@admin_required
def result_wrong_csv(attempt_id):
    rows = reports.attempt_wrong_rows(get_store(), g.identity, attempt_id)
    return reports.wrong_answers_csv(rows, f'wrong_attempt_{attempt_id}.csv')


@admin.route('/results/<int:attempt_id>/detail.csv')
@admin_required
def result_detail_csv(attempt_id):
    rows = reports.attempt_detail_rows(get_store(), g.identity, attempt_id)
    return reports.csv_response(reports.DETAIL_CSV_HEADER, rows, f'result_{attempt_id}.csv')


@admin.route('/analytics')
@admin_required
def analytics():
    """Basic admin analytics for the caller's team."""
    return jsonify({'ok': True, 'team': g.identity.team, **get_store().team_stats(g.identity.team)})
