"""
Result reporting: graded attempt view, wrong-answer exports and the
"most frequently missed" ranking.
"""

import csv
from collections import Counter
from io import StringIO

from flask import Response

import config
from auth import ROLE_ADMIN
from errors import AttemptInProgress, Forbidden, NotFound
from exam import STATUS_SUBMITTED, graded_questions, isoformat

WRONG_CSV_HEADER = [
    'account_id', 'attempt_id', 'submitted_at', 'question_id', 'question',
    'submitted_choice', 'correct_choice', 'points',
]
RANKING_CSV_HEADER = ['question_id', 'question', 'miss_count', 'points']
DETAIL_CSV_HEADER = [
    'attempt_id', 'emp_id', 'status', 'started_at', 'submitted_at',
    'question_id', 'question', 'selected', 'correct', 'result',
]
RESULTS_CSV_HEADER = [
    'id', 'emp_id', 'team', 'status', 'score', 'total_points', 'started_at', 'submitted_at',
]

UNANSWERED = 'unanswered'


# ==================== ACCESS ====================

def can_view_attempt(identity, attempt):
    """
    Examinees see only their own attempts. Admins see attempts of their team;
    an attempt with no team recorded is visible to every admin.
    """
    if identity.role == ROLE_ADMIN:
        return not attempt.get('team') or attempt['team'] == identity.team
    return attempt['emp_id'] == identity.account_id


def load_visible_attempt(store, identity, attempt_id):
    attempt = store.get_attempt(attempt_id)
    if attempt is None:
        raise NotFound(f'Attempt {attempt_id} not found.')
    if not can_view_attempt(identity, attempt):
        raise Forbidden('You cannot view this attempt.')
    return attempt


def load_finalized_attempt(store, identity, attempt_id):
    """Like load_visible_attempt, but refuses attempts that are still in progress."""
    attempt = load_visible_attempt(store, identity, attempt_id)
    if attempt['status'] != STATUS_SUBMITTED:
        raise AttemptInProgress()
    return attempt


def check_account_access(store, identity, emp_id):
    """Examinees may only look at themselves; admins at accounts of their own team."""
    if identity.role != ROLE_ADMIN:
        if emp_id != identity.account_id:
            raise Forbidden('You cannot view another account.')
        return
    account = store.get_account(emp_id)
    if account is None:
        raise NotFound(f'Account {emp_id} not found.')
    team = (account.get('team') or '').strip() or config.DEFAULT_TEAM
    if team != identity.team:
        raise Forbidden('This account belongs to another team.')


# ==================== RESULT VIEW ====================

def attempt_metadata(attempt):
    return {
        'id': attempt['id'],
        'empId': attempt['emp_id'],
        'team': attempt.get('team'),
        'status': attempt['status'],
        'score': attempt['score'],
        'totalPoints': attempt['total_points'],
        'correctCount': attempt['correct_count'],
        'questionCount': len(attempt['question_ids']),
        'startedAt': isoformat(attempt['started_at']),
        'submittedAt': isoformat(attempt.get('submitted_at')),
        'autoSubmitted': attempt.get('auto_submitted', False),
        'isLate': attempt.get('is_late', False),
    }


def get_attempt_result(store, identity, attempt_id):
    attempt = load_finalized_attempt(store, identity, attempt_id)
    questions = store.questions_by_ids(attempt['question_ids'])
    answers = store.get_answers(attempt['id'])
    return {
        'attempt': attempt_metadata(attempt),
        'graded': graded_questions(attempt, questions, answers),
    }


# ==================== WRONG ANSWERS ====================

def wrong_rows(attempt, questions, answers):
    rows = []
    for g in graded_questions(attempt, questions, answers):
        if g['isCorrect']:
            continue
        selected = g['selectedIndex']
        rows.append({
            'account_id': attempt['emp_id'],
            'attempt_id': attempt['id'],
            'submitted_at': isoformat(attempt.get('submitted_at')) or '',
            'question_id': g['questionId'],
            'question': g['content'],
            'submitted_choice': selected + 1 if selected is not None else UNANSWERED,
            'correct_choice': g['correctIndex'] + 1,
            'points': g['points'],
        })
    return rows


def attempt_wrong_rows(store, identity, attempt_id):
    attempt = load_finalized_attempt(store, identity, attempt_id)
    questions = store.questions_by_ids(attempt['question_ids'])
    return wrong_rows(attempt, questions, store.get_answers(attempt['id']))


def attempt_detail_rows(store, identity, attempt_id):
    """Every graded question of one submitted attempt, for the admin download."""
    attempt = load_finalized_attempt(store, identity, attempt_id)
    questions = store.questions_by_ids(attempt['question_ids'])
    rows = []
    for g in graded_questions(attempt, questions, store.get_answers(attempt['id'])):
        selected = g['selectedIndex']
        if selected is None:
            result = UNANSWERED
        else:
            result = 'correct' if g['isCorrect'] else 'wrong'
        rows.append({
            'attempt_id': attempt['id'],
            'emp_id': attempt['emp_id'],
            'status': attempt['status'],
            'started_at': isoformat(attempt['started_at']) or '',
            'submitted_at': isoformat(attempt.get('submitted_at')) or '',
            'question_id': g['questionId'],
            'question': g['content'],
            'selected': selected + 1 if selected is not None else '',
            'correct': g['correctIndex'] + 1,
            'result': result,
        })
    return rows


def results_rows(attempts):
    return [
        {
            'id': a['id'],
            'emp_id': a['emp_id'],
            'team': a.get('team') or '',
            'status': a['status'],
            'score': a['score'],
            'total_points': a['total_points'],
            'started_at': isoformat(a['started_at']) or '',
            'submitted_at': isoformat(a.get('submitted_at')) or '',
        }
        for a in attempts
    ]


def cumulative_wrong_rows(store, identity, emp_id):
    """Wrong/unanswered questions across every submitted attempt of one account."""
    check_account_access(store, identity, emp_id)
    attempts = store.submitted_attempts(emp_id)
    if not attempts:
        return []
    all_qids = [qid for a in attempts for qid in a['question_ids']]
    questions = store.questions_by_ids(all_qids)
    answers = store.answers_for_attempts([a['id'] for a in attempts])
    rows = []
    for attempt in attempts:
        rows.extend(wrong_rows(attempt, questions, answers.get(attempt['id'], {})))
    return rows


def most_missed(rows, limit=None):
    """Group wrong rows by question, most frequently missed first."""
    limit = config.MOST_MISSED_LIMIT if limit is None else limit
    counts = Counter(r['question_id'] for r in rows)
    first_seen = {}
    for r in rows:
        first_seen.setdefault(r['question_id'], r)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]
    return [
        {
            'question_id': qid,
            'question': first_seen[qid]['question'],
            'miss_count': count,
            'points': first_seen[qid]['points'],
        }
        for qid, count in ranked
    ]


# ==================== CSV ====================

def to_csv(header, rows):
    """CSV bytes as UTF-8 with a BOM so spreadsheet tools detect the encoding."""
    output = StringIO()
    writer = csv.DictWriter(output, fieldnames=header, lineterminator='\n')
    writer.writeheader()
    writer.writerows(rows)
    return output.getvalue().encode('utf-8-sig')


def csv_response(header, rows, filename):
    return Response(
        to_csv(header, rows),
        mimetype='text/csv',  # werkzeug appends "; charset=utf-8"
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )


def wrong_answers_csv(rows, filename, ranking=False):
    if ranking:
        return csv_response(RANKING_CSV_HEADER, most_missed(rows), filename)
    return csv_response(WRONG_CSV_HEADER, rows, filename)
