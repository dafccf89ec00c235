"""
Exam attempt lifecycle: start (sample questions), submit (grade once), and the
graded view of an attempt shared with the reports.
"""

import logging
import random
from datetime import datetime, timedelta

import config
from auth import ROLE_EXAMINEE
from errors import Forbidden, InvalidInput, InvalidRole, NoQuestionsAvailable, NotFound

logger = logging.getLogger(__name__)

STATUS_IN_PROGRESS = 'in_progress'
STATUS_SUBMITTED = 'submitted'


def isoformat(value):
    return value.isoformat() if value else None


def is_valid_question(q):
    """A question may only be sampled if its correct index points at one of its choices."""
    choices = q.get('choices') or []
    points = q.get('points')
    return (
        len(choices) >= config.MIN_CHOICES
        and isinstance(q.get('correct_index'), int)
        and 0 <= q['correct_index'] < len(choices)
        and isinstance(points, int)
        and points >= 1
    )


def public_question(q):
    """Question as shown to an examinee. Never includes the correct index."""
    return {
        'id': q['id'],
        'content': q['content'],
        'choices': list(q['choices']),
        'points': q['points'],
    }


# ==================== INPUT PARSING ====================

def _as_index(value):
    """int, or a string of digits; anything else is rejected."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def parse_attempt_id(raw):
    attempt_id = _as_index(raw)
    if attempt_id is None or attempt_id <= 0:
        raise InvalidInput('attemptId must be a positive integer.')
    return attempt_id


def parse_answer_map(raw):
    """
    {question_id: selected_index} from a JSON object. Null values mean
    unanswered; keys that are not question ids are ignored.
    """
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise InvalidInput('answers must be an object mapping question id to choice index.')
    answers = {}
    for key, value in raw.items():
        qid = _as_index(key)
        if qid is None:
            continue
        if value is None:
            continue
        idx = _as_index(value)
        if idx is None or idx < 0:
            raise InvalidInput(f'Invalid choice index for question {qid}: {value!r}')
        answers[qid] = idx
    return answers


# ==================== GRADING ====================

def grade(question_ids, questions, answer_map):
    """
    Grade a frozen question list. Questions missing from `questions`
    (deleted after the attempt started) count toward neither score nor total.
    """
    score = total_points = correct_count = 0
    answers = []
    wrong = []
    seen = set()
    for qid in question_ids:
        q = questions.get(qid)
        if q is None or qid in seen:
            continue
        seen.add(qid)
        selected = answer_map.get(qid)
        if selected is not None and selected >= len(q['choices']):
            raise InvalidInput(f'Choice index {selected} is out of range for question {qid}.')
        points = int(q['points'])
        is_correct = selected is not None and selected == q['correct_index']
        total_points += points
        if is_correct:
            score += points
            correct_count += 1
        else:
            wrong.append(_wrong_item(q, selected))
        answers.append({
            'question_id': qid,
            'selected_index': selected,
            'is_correct': is_correct,
            'points': points,
        })
    return {
        'score': score,
        'total_points': total_points,
        'correct_count': correct_count,
        'answers': answers,
        'wrong': wrong,
    }


def _wrong_item(q, selected):
    return {
        'questionId': q['id'],
        'content': q['content'],
        'choices': list(q['choices']),
        'selectedIndex': selected,
        'correctIndex': q['correct_index'],
        'points': q['points'],
    }


def graded_questions(attempt, questions, answers):
    """Per-question view of an attempt from its stored answers; deleted questions are left out."""
    graded = []
    for qid in attempt['question_ids']:
        q = questions.get(qid)
        if q is None:
            continue
        answer = answers.get(qid)
        selected = answer['selected_index'] if answer else None
        graded.append({
            'questionId': qid,
            'content': q['content'],
            'choices': list(q['choices']),
            'selectedIndex': selected,
            'correctIndex': q['correct_index'],
            'isCorrect': bool(answer and answer['is_correct']),
            'points': q['points'],
        })
    return graded


def _submission_payload(attempt_id, score, total_points, correct_count, wrong,
                        submitted_at, already_submitted, is_late, auto_submitted):
    return {
        'attemptId': attempt_id,
        'score': score,
        'totalPoints': total_points,
        'correctCount': correct_count,
        'wrongQuestionIds': [w['questionId'] for w in wrong],
        'wrong': wrong,
        'submittedAt': isoformat(submitted_at),
        'alreadySubmitted': already_submitted,
        'isLate': is_late,
        'autoSubmitted': auto_submitted,
    }


def persisted_result(store, attempt):
    """Grading result of an already submitted attempt, rebuilt from what was stored."""
    questions = store.questions_by_ids(attempt['question_ids'])
    answers = store.get_answers(attempt['id'])
    wrong = [
        {k: g[k] for k in ('questionId', 'content', 'choices', 'selectedIndex', 'correctIndex', 'points')}
        for g in graded_questions(attempt, questions, answers) if not g['isCorrect']
    ]
    return _submission_payload(
        attempt['id'], attempt['score'], attempt['total_points'], attempt['correct_count'],
        wrong, attempt['submitted_at'], True, attempt['is_late'], attempt['auto_submitted'],
    )


# ==================== LIFECYCLE ====================

def start_attempt(store, identity, now=None, rng=random):
    """Sample questions for the caller's team and open a new attempt."""
    if identity.role != ROLE_EXAMINEE:
        raise InvalidRole(redirect='/admin')

    pool = []
    for q in store.list_questions(identity.team, active_only=True):
        if is_valid_question(q):
            pool.append(q)
        else:
            logger.warning('Skipping malformed question %s (team %s)', q.get('id'), identity.team)
    if not pool:
        raise NoQuestionsAvailable()

    picked = rng.sample(pool, min(config.QUESTIONS_PER_ATTEMPT, len(pool)))
    question_ids = [q['id'] for q in picked]
    total_points = sum(q['points'] for q in picked)
    started_at = now or datetime.now()

    attempt_id = store.create_attempt(
        identity.account_id, identity.team, question_ids, total_points,
        config.EXAM_DURATION_SECONDS, started_at,
    )
    logger.info('Attempt %s started by %s with %d questions', attempt_id, identity.account_id, len(picked))
    return {
        'attemptId': attempt_id,
        'startedAt': isoformat(started_at),
        'durationSec': config.EXAM_DURATION_SECONDS,
        'totalPoints': total_points,
        'questions': [public_question(q) for q in picked],
    }


def submit_attempt(store, identity, attempt_id, raw_answers, auto=False, now=None):
    """Grade and finalize an attempt exactly once; later calls get the stored result."""
    attempt_id = parse_attempt_id(attempt_id)
    answer_map = parse_answer_map(raw_answers)

    attempt = store.get_attempt(attempt_id)
    if attempt is None:
        raise NotFound(f'Attempt {attempt_id} not found.')
    if attempt['emp_id'] != identity.account_id:
        raise Forbidden('This attempt belongs to another account.')
    if attempt['status'] == STATUS_SUBMITTED:
        return persisted_result(store, attempt)

    questions = store.questions_by_ids(attempt['question_ids'])
    result = grade(attempt['question_ids'], questions, answer_map)

    submitted_at = now or datetime.now()
    duration = attempt.get('duration_sec') or config.EXAM_DURATION_SECONDS
    deadline = attempt['started_at'] + timedelta(seconds=duration + config.LATE_GRACE_SECONDS)
    is_late = submitted_at > deadline

    finalized = store.finalize_attempt(
        attempt_id, result['score'], result['total_points'], result['correct_count'],
        result['answers'], submitted_at, auto_submitted=bool(auto), is_late=is_late,
    )
    if not finalized:
        logger.info('Attempt %s was finalized by a concurrent submit; returning stored result', attempt_id)
        return persisted_result(store, store.get_attempt(attempt_id))

    logger.info('Attempt %s submitted by %s: %s/%s%s', attempt_id, identity.account_id,
                result['score'], result['total_points'], ' (late)' if is_late else '')
    return _submission_payload(
        attempt_id, result['score'], result['total_points'], result['correct_count'],
        result['wrong'], submitted_at, False, is_late, bool(auto),
    )
