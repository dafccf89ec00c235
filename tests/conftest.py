import copy
import sys
import threading
from datetime import datetime
from pathlib import Path

import bcrypt
import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import auth
from app import create_app
from auth import Identity
from errors import Conflict


def _fast_hash(password):
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=4)).decode('utf-8')


class FakeStore:
    """In-memory stand-in for database.store.ExamStore."""

    def __init__(self):
        self.accounts = {}
        self.questions = {}
        self.attempts = {}
        self.answers = {}
        self._next_question_id = 1
        self._next_attempt_id = 1
        self._lock = threading.Lock()
        self.finalize_calls = 0

    # -- seeding helpers -------------------------------------------------

    def add_account(self, emp_id, password='pass1234', role='examinee', team='A',
                    is_active=True, name=None):
        self.accounts[emp_id] = {
            'id': len(self.accounts) + 1,
            'emp_id': emp_id,
            'name': name,
            'role': role,
            'team': team,
            'is_active': is_active,
            'password_hash': _fast_hash(password),
            'created_at': datetime(2026, 1, 1, 9, 0, 0),
        }
        return self.accounts[emp_id]

    def add_question(self, content='Question', choices=None, correct_index=0, points=1,
                     team='A', is_active=True):
        q = self.create_question(team, content, choices or ['a', 'b', 'c', 'd'],
                                 correct_index, points, is_active)
        return q['id']

    # -- accounts ----------------------------------------------------------

    def get_account(self, emp_id):
        return copy.deepcopy(self.accounts.get(emp_id))

    def list_accounts(self, team):
        return [copy.deepcopy(a) for k, a in sorted(self.accounts.items()) if a['team'] == team]

    def create_account(self, emp_id, name, role, team, password_hash):
        if emp_id in self.accounts:
            raise Conflict(f'Account {emp_id} already exists.')
        self.accounts[emp_id] = {
            'id': len(self.accounts) + 1, 'emp_id': emp_id, 'name': name, 'role': role,
            'team': team, 'is_active': True, 'password_hash': password_hash,
            'created_at': datetime.now(),
        }
        return self.get_account(emp_id)

    def set_account_active(self, emp_id, is_active):
        if emp_id not in self.accounts:
            return False
        self.accounts[emp_id]['is_active'] = bool(is_active)
        return True

    def set_account_password(self, emp_id, password_hash):
        if emp_id not in self.accounts:
            return False
        self.accounts[emp_id]['password_hash'] = password_hash
        return True

    # -- questions ---------------------------------------------------------

    def list_questions(self, team, active_only=False):
        return [
            copy.deepcopy(q) for _, q in sorted(self.questions.items())
            if q['team'] == team and (q['is_active'] or not active_only)
        ]

    def get_question(self, question_id):
        return copy.deepcopy(self.questions.get(question_id))

    def questions_by_ids(self, question_ids):
        return {qid: copy.deepcopy(self.questions[qid]) for qid in set(question_ids) if qid in self.questions}

    def create_question(self, team, content, choices, correct_index, points, is_active=True):
        qid = self._next_question_id
        self._next_question_id += 1
        self.questions[qid] = {
            'id': qid, 'team': team, 'content': content, 'choices': list(choices),
            'correct_index': correct_index, 'points': points, 'is_active': bool(is_active),
            'created_at': datetime.now(), 'updated_at': datetime.now(),
        }
        return self.get_question(qid)

    def update_question(self, question_id, content, choices, correct_index, points):
        if question_id not in self.questions:
            return False
        self.questions[question_id].update(
            content=content, choices=list(choices), correct_index=correct_index, points=points)
        return True

    def set_question_active(self, question_id, is_active):
        if question_id not in self.questions:
            return False
        self.questions[question_id]['is_active'] = bool(is_active)
        return True

    def clear_questions(self, team):
        doomed = [qid for qid, q in self.questions.items() if q['team'] == team]
        for qid in doomed:
            del self.questions[qid]
        return len(doomed)

    def delete_question(self, question_id):
        self.questions.pop(question_id, None)

    # -- attempts ----------------------------------------------------------

    def create_attempt(self, emp_id, team, question_ids, total_points, duration_sec, started_at):
        with self._lock:
            attempt_id = self._next_attempt_id
            self._next_attempt_id += 1
            self.attempts[attempt_id] = {
                'id': attempt_id, 'emp_id': emp_id, 'team': team,
                'question_ids': list(question_ids), 'status': 'in_progress', 'score': 0,
                'total_points': total_points, 'correct_count': 0, 'duration_sec': duration_sec,
                'auto_submitted': False, 'is_late': False, 'started_at': started_at,
                'submitted_at': None,
            }
        return attempt_id

    def get_attempt(self, attempt_id):
        return copy.deepcopy(self.attempts.get(attempt_id))

    def finalize_attempt(self, attempt_id, score, total_points, correct_count, answers,
                         submitted_at, auto_submitted=False, is_late=False):
        with self._lock:
            self.finalize_calls += 1
            attempt = self.attempts.get(attempt_id)
            if attempt is None or attempt['status'] != 'in_progress':
                return False
            attempt.update(status='submitted', score=score, total_points=total_points,
                           correct_count=correct_count, submitted_at=submitted_at,
                           auto_submitted=auto_submitted, is_late=is_late)
            self.answers[attempt_id] = {
                a['question_id']: dict(a, attempt_id=attempt_id) for a in answers
            }
            return True

    def get_answers(self, attempt_id):
        return copy.deepcopy(self.answers.get(attempt_id, {}))

    def answers_for_attempts(self, attempt_ids):
        return {aid: self.get_answers(aid) for aid in set(attempt_ids) if aid in self.answers}

    def list_attempts(self, team, emp_id=None, status=None, limit=100):
        rows = [
            a for a in self.attempts.values()
            if (a['team'] == team or a['team'] is None)
            and (emp_id is None or a['emp_id'] == emp_id)
            and (status is None or a['status'] == status)
        ]
        rows.sort(key=lambda a: a['id'], reverse=True)
        return copy.deepcopy(rows[:limit])

    def submitted_attempts(self, emp_id):
        rows = [a for a in self.attempts.values() if a['emp_id'] == emp_id and a['status'] == 'submitted']
        rows.sort(key=lambda a: a['id'], reverse=True)
        return copy.deepcopy(rows)

    def delete_attempt(self, attempt_id):
        self.answers.pop(attempt_id, None)
        return self.attempts.pop(attempt_id, None) is not None

    def attempt_summary(self, team):
        grouped = {}
        for a in self.list_attempts(team, status='submitted', limit=10 ** 6):
            grouped.setdefault(a['emp_id'], []).append(a)
        return [
            {
                'emp_id': emp_id,
                'attempts': len(rows),
                'max_score': max(r['score'] for r in rows),
                'avg_score': round(sum(r['score'] for r in rows) / len(rows), 1),
                'latest_submitted_at': max(r['submitted_at'] for r in rows),
            }
            for emp_id, rows in sorted(grouped.items())
        ]

    def team_stats(self, team):
        questions = [q for q in self.questions.values() if q['team'] == team]
        submitted = self.list_attempts(team, status='submitted', limit=10 ** 6)
        avg = sum(a['score'] for a in submitted) / len(submitted) if submitted else 0
        return {
            'question_count': len(questions),
            'active_question_count': sum(1 for q in questions if q['is_active']),
            'submitted_attempt_count': len(submitted),
            'avg_score': round(avg, 2),
        }


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def examinee():
    return Identity(account_id='emp001', role='examinee', team='A', active=True, name='Kim')


@pytest.fixture
def admin_identity():
    return Identity(account_id='admin', role='admin', team='A', active=True, name='Admin')


@pytest.fixture(autouse=True)
def _reset_login_limits():
    auth.reset_rate_limits()
    yield
    auth.reset_rate_limits()


@pytest.fixture
def app(store, tmp_path):
    app = create_app(
        store=store,
        TESTING=True,
        CSRF_ENABLED=False,
        SESSION_FILE_DIR=str(tmp_path / 'sessions'),
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    def _login(emp_id, password='pass1234'):
        resp = client.post('/api/auth/login', json={'emp_id': emp_id, 'password': password})
        assert resp.status_code == 200, resp.get_json()
        return resp.get_json()
    return _login
