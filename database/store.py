"""
Data access for accounts, questions, attempts and answers.
Every SQL statement of the portal lives here; callers get plain dict rows
with JSON columns already decoded.
"""

import json
import logging
from contextlib import contextmanager

import pymysql

from database.db import get_db
from errors import Conflict, UpstreamUnavailable

logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = "id, emp_id, name, role, team, is_active, password_hash, created_at"
_QUESTION_COLUMNS = "id, team, content, choices, correct_index, points, is_active, created_at, updated_at"
_ATTEMPT_COLUMNS = (
    "id, emp_id, team, question_ids, status, score, total_points, correct_count, "
    "duration_sec, auto_submitted, is_late, started_at, submitted_at"
)


def _load_json(value, default):
    if value is None or value == '':
        return default
    if isinstance(value, (bytes, bytearray)):
        value = value.decode('utf-8')
    if isinstance(value, str):
        return json.loads(value)
    return value


def _account_row(row):
    if row is None:
        return None
    row['is_active'] = bool(row['is_active'])
    return row


def _question_row(row):
    if row is None:
        return None
    row['choices'] = [str(c) for c in _load_json(row['choices'], [])]
    row['is_active'] = bool(row['is_active'])
    return row


def _attempt_row(row):
    if row is None:
        return None
    row['question_ids'] = [int(q) for q in _load_json(row['question_ids'], [])]
    row['auto_submitted'] = bool(row['auto_submitted'])
    row['is_late'] = bool(row['is_late'])
    return row


def _placeholders(values):
    return ','.join(['%s'] * len(values))


class ExamStore:
    """MySQL-backed store. Each method runs in its own pooled transaction."""

    @contextmanager
    def _cursor(self):
        try:
            with get_db() as conn:
                with conn.cursor() as cur:
                    yield cur
        except pymysql.err.IntegrityError:
            raise
        except pymysql.MySQLError as e:
            logger.exception('Datastore error: %s', e)
            raise UpstreamUnavailable() from e

    # ==================== ACCOUNTS ====================

    def get_account(self, emp_id):
        with self._cursor() as cur:
            cur.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE emp_id = %s", (emp_id,))
            return _account_row(cur.fetchone())

    def list_accounts(self, team):
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE team = %s ORDER BY emp_id",
                (team,)
            )
            return [_account_row(r) for r in cur.fetchall()]

    def create_account(self, emp_id, name, role, team, password_hash):
        try:
            with self._cursor() as cur:
                cur.execute(
                    "INSERT INTO accounts (emp_id, name, role, team, is_active, password_hash) "
                    "VALUES (%s, %s, %s, %s, 1, %s)",
                    (emp_id, name, role, team, password_hash)
                )
        except pymysql.err.IntegrityError as e:
            raise Conflict(f'Account {emp_id} already exists.') from e
        return self.get_account(emp_id)

    def set_account_active(self, emp_id, is_active):
        with self._cursor() as cur:
            cur.execute(
                "UPDATE accounts SET is_active = %s WHERE emp_id = %s",
                (1 if is_active else 0, emp_id)
            )
            return cur.rowcount > 0

    def set_account_password(self, emp_id, password_hash):
        with self._cursor() as cur:
            cur.execute(
                "UPDATE accounts SET password_hash = %s WHERE emp_id = %s",
                (password_hash, emp_id)
            )
            return cur.rowcount > 0

    # ==================== QUESTIONS ====================

    def list_questions(self, team, active_only=False):
        sql = f"SELECT {_QUESTION_COLUMNS} FROM questions WHERE team = %s"
        if active_only:
            sql += " AND is_active = 1"
        with self._cursor() as cur:
            cur.execute(sql + " ORDER BY id", (team,))
            return [_question_row(r) for r in cur.fetchall()]

    def get_question(self, question_id):
        with self._cursor() as cur:
            cur.execute(f"SELECT {_QUESTION_COLUMNS} FROM questions WHERE id = %s", (question_id,))
            return _question_row(cur.fetchone())

    def questions_by_ids(self, question_ids):
        """Batch-load questions in ONE query; ids that no longer exist are simply absent."""
        ids = sorted(set(question_ids))
        if not ids:
            return {}
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_QUESTION_COLUMNS} FROM questions WHERE id IN ({_placeholders(ids)})",
                ids
            )
            return {r['id']: _question_row(r) for r in cur.fetchall()}

    def create_question(self, team, content, choices, correct_index, points, is_active=True):
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO questions (team, content, choices, correct_index, points, is_active) "
                "VALUES (%s, %s, %s, %s, %s, %s)",
                (team, content, json.dumps(choices, ensure_ascii=False), correct_index, points,
                 1 if is_active else 0)
            )
            question_id = cur.lastrowid
        return self.get_question(question_id)

    def update_question(self, question_id, content, choices, correct_index, points):
        with self._cursor() as cur:
            cur.execute(
                "UPDATE questions SET content = %s, choices = %s, correct_index = %s, points = %s "
                "WHERE id = %s",
                (content, json.dumps(choices, ensure_ascii=False), correct_index, points, question_id)
            )
            return cur.rowcount > 0

    def set_question_active(self, question_id, is_active):
        with self._cursor() as cur:
            cur.execute(
                "UPDATE questions SET is_active = %s WHERE id = %s",
                (1 if is_active else 0, question_id)
            )
            return cur.rowcount > 0

    def clear_questions(self, team):
        with self._cursor() as cur:
            cur.execute("DELETE FROM questions WHERE team = %s", (team,))
            return cur.rowcount

    # ==================== ATTEMPTS ====================

    def create_attempt(self, emp_id, team, question_ids, total_points, duration_sec, started_at):
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO attempts (emp_id, team, question_ids, status, score, total_points, "
                "correct_count, duration_sec, started_at) "
                "VALUES (%s, %s, %s, 'in_progress', 0, %s, 0, %s, %s)",
                (emp_id, team, json.dumps(question_ids), total_points, duration_sec, started_at)
            )
            return cur.lastrowid

    def get_attempt(self, attempt_id):
        with self._cursor() as cur:
            cur.execute(f"SELECT {_ATTEMPT_COLUMNS} FROM attempts WHERE id = %s", (attempt_id,))
            return _attempt_row(cur.fetchone())

    def finalize_attempt(self, attempt_id, score, total_points, correct_count, answers,
                         submitted_at, auto_submitted=False, is_late=False):
        """
        Move an attempt from in_progress to submitted and store its answers,
        in one transaction. The UPDATE only matches while the attempt is still
        in_progress, so of two racing submits exactly one sees rowcount == 1.
        Returns True if this call finalized the attempt.
        """
        with self._cursor() as cur:
            cur.execute(
                "UPDATE attempts SET status = 'submitted', score = %s, total_points = %s, "
                "correct_count = %s, submitted_at = %s, auto_submitted = %s, is_late = %s "
                "WHERE id = %s AND status = 'in_progress'",
                (score, total_points, correct_count, submitted_at,
                 1 if auto_submitted else 0, 1 if is_late else 0, attempt_id)
            )
            if cur.rowcount != 1:
                return False
            if answers:
                cur.executemany(
                    "INSERT INTO attempt_answers (attempt_id, question_id, selected_index, is_correct, points) "
                    "VALUES (%s, %s, %s, %s, %s)",
                    [(attempt_id, a['question_id'], a['selected_index'], 1 if a['is_correct'] else 0,
                      a['points']) for a in answers]
                )
            return True

    def get_answers(self, attempt_id):
        return self.answers_for_attempts([attempt_id]).get(attempt_id, {})

    def answers_for_attempts(self, attempt_ids):
        """{attempt_id: {question_id: answer_row}} for all given attempts."""
        ids = sorted(set(attempt_ids))
        if not ids:
            return {}
        with self._cursor() as cur:
            cur.execute(
                "SELECT attempt_id, question_id, selected_index, is_correct, points "
                f"FROM attempt_answers WHERE attempt_id IN ({_placeholders(ids)})",
                ids
            )
            out = {}
            for r in cur.fetchall():
                r['is_correct'] = bool(r['is_correct'])
                out.setdefault(r['attempt_id'], {})[r['question_id']] = r
            return out

    def list_attempts(self, team, emp_id=None, status=None, limit=100):
        """Attempts visible to a team's admins; attempts without a team are visible to every admin."""
        sql = f"SELECT {_ATTEMPT_COLUMNS} FROM attempts WHERE (team = %s OR team IS NULL)"
        params = [team]
        if emp_id:
            sql += " AND emp_id = %s"
            params.append(emp_id)
        if status:
            sql += " AND status = %s"
            params.append(status)
        sql += " ORDER BY id DESC LIMIT %s"
        params.append(limit)
        with self._cursor() as cur:
            cur.execute(sql, params)
            return [_attempt_row(r) for r in cur.fetchall()]

    def submitted_attempts(self, emp_id):
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_ATTEMPT_COLUMNS} FROM attempts "
                "WHERE emp_id = %s AND status = 'submitted' ORDER BY id DESC",
                (emp_id,)
            )
            return [_attempt_row(r) for r in cur.fetchall()]

    def delete_attempt(self, attempt_id):
        """Delete an attempt (CASCADE removes its answers)."""
        with self._cursor() as cur:
            cur.execute("DELETE FROM attempts WHERE id = %s", (attempt_id,))
            return cur.rowcount > 0

    def attempt_summary(self, team):
        with self._cursor() as cur:
            cur.execute("""
                SELECT emp_id, COUNT(*) AS attempts, MAX(score) AS max_score,
                       AVG(score) AS avg_score, MAX(submitted_at) AS latest_submitted_at
                FROM attempts
                WHERE status = 'submitted' AND (team = %s OR team IS NULL)
                GROUP BY emp_id
                ORDER BY emp_id
            """, (team,))
            rows = cur.fetchall()
        for r in rows:
            r['avg_score'] = round(float(r['avg_score'] or 0), 1)
        return rows

    def team_stats(self, team):
        with self._cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) AS total, COALESCE(SUM(is_active), 0) AS active "
                "FROM questions WHERE team = %s",
                (team,)
            )
            q = cur.fetchone()
            cur.execute(
                "SELECT COUNT(*) AS count, AVG(score) AS avg_score FROM attempts "
                "WHERE status = 'submitted' AND (team = %s OR team IS NULL)",
                (team,)
            )
            a = cur.fetchone()
        return {
            'question_count': int(q['total']),
            'active_question_count': int(q['active']),
            'submitted_attempt_count': int(a['count']),
            'avg_score': round(float(a['avg_score'] or 0), 2),
        }
