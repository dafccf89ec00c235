import codecs

import bcrypt
import pytest


@pytest.fixture
def admin_client(client, store, login):
    store.add_account('boss', role='admin', team='A')
    login('boss')
    return client


def test_examinee_cannot_use_admin_api(client, store, login):
    store.add_account('emp001')
    login('emp001')

    resp = client.get('/api/admin/accounts')

    assert resp.status_code == 403
    assert resp.get_json()['error'] == 'FORBIDDEN'


def test_create_account_in_admin_team(admin_client, store):
    resp = admin_client.post('/api/admin/accounts', json={
        'emp_id': 'emp100', 'name': 'Lee', 'password': 'secret1',
    })

    assert resp.status_code == 201
    row = resp.get_json()['row']
    assert (row['empId'], row['role'], row['team'], row['isActive']) == ('emp100', 'examinee', 'A', True)
    stored = store.accounts['emp100']['password_hash']
    assert stored != 'secret1'
    assert bcrypt.checkpw(b'secret1', stored.encode('utf-8'))


def test_create_account_validation_and_duplicates(admin_client, store):
    store.add_account('emp001')

    assert admin_client.post('/api/admin/accounts', json={'emp_id': '', 'password': 'abcd'}).status_code == 400
    assert admin_client.post('/api/admin/accounts', json={'emp_id': 'x', 'password': 'abc'}).status_code == 400
    assert admin_client.post(
        '/api/admin/accounts', json={'emp_id': 'x', 'password': 'abcd', 'role': 'root'}).status_code == 400
    resp = admin_client.post('/api/admin/accounts', json={'emp_id': 'emp001', 'password': 'abcd'})
    assert resp.status_code == 409
    assert resp.get_json()['error'] == 'CONFLICT'


def test_list_accounts_is_team_scoped(admin_client, store):
    store.add_account('emp001', team='A')
    store.add_account('emp002', team='B')

    rows = admin_client.get('/api/admin/accounts').get_json()['rows']

    assert [r['empId'] for r in rows] == ['boss', 'emp001']
    assert all('password_hash' not in r for r in rows)


def test_deactivate_and_reset_password(admin_client, client, store, login):
    store.add_account('emp001')

    assert admin_client.post('/api/admin/accounts/emp001/active', json={'active': False}).status_code == 200
    assert store.accounts['emp001']['is_active'] is False
    assert admin_client.post('/api/admin/accounts/emp001/active', json={'active': 'maybe'}).status_code == 400
    assert admin_client.post('/api/admin/accounts/boss/active', json={'active': False}).status_code == 400

    assert admin_client.post('/api/admin/accounts/emp001/active', json={'active': True}).status_code == 200
    assert admin_client.post('/api/admin/accounts/emp001/password', json={'password': 'newpass'}).status_code == 200
    client.post('/api/auth/logout')
    assert login('emp001', 'newpass')['empId'] == 'emp001'


def test_cannot_manage_other_team_accounts(admin_client, store):
    store.add_account('emp002', team='B')

    assert admin_client.post('/api/admin/accounts/emp002/active', json={'active': False}).status_code == 403
    assert admin_client.post('/api/admin/accounts/ghost/password', json={'password': 'abcd'}).status_code == 404
    assert store.accounts['emp002']['is_active'] is True


def test_create_question_drops_blank_choices(admin_client, store):
    resp = admin_client.post('/api/admin/questions', json={
        'content': 'Which one?',
        'choices': ['red', '', 'blue', ' '],
        'correct_index': 2,
        'points': 3,
    })

    assert resp.status_code == 201
    row = resp.get_json()['row']
    assert row['choices'] == ['red', 'blue']
    assert row['correctIndex'] == 1
    assert row['team'] == 'A'


@pytest.mark.parametrize('body', [
    {'content': '', 'choices': ['a', 'b'], 'correct_index': 0},
    {'content': 'Q', 'choices': ['a'], 'correct_index': 0},
    {'content': 'Q', 'choices': ['a', 'b'], 'correct_index': 2},
    {'content': 'Q', 'choices': ['a', '', 'c'], 'correct_index': 1},
    {'content': 'Q', 'choices': ['a', 'b'], 'correct_index': 'first'},
    {'content': 'Q', 'choices': 42, 'correct_index': 0},
])
def test_invalid_questions_are_rejected(admin_client, store, body):
    resp = admin_client.post('/api/admin/questions', json=body)

    assert resp.status_code == 400
    assert store.questions == {}


def test_points_are_clamped(admin_client):
    row = admin_client.post('/api/admin/questions', json={
        'content': 'Q', 'choices': 'yes\nno', 'correct_index': 0, 'points': 500,
    }).get_json()['row']

    assert row['points'] == 100
    assert row['choices'] == ['yes', 'no']


def test_update_and_soft_delete_question(admin_client, store):
    qid = store.add_question('Old', ['a', 'b'], correct_index=0)

    resp = admin_client.put(f'/api/admin/questions/{qid}', json={
        'content': 'New', 'choices': ['x', 'y', 'z'], 'correct_index': 2, 'points': 5,
    })
    assert resp.status_code == 200
    assert store.questions[qid]['content'] == 'New'
    assert store.questions[qid]['correct_index'] == 2

    assert admin_client.post(f'/api/admin/questions/{qid}/active', json={'active': False}).status_code == 200
    assert store.questions[qid]['is_active'] is False
    active = admin_client.get('/api/admin/questions?active=1').get_json()['rows']
    assert active == []
    assert len(admin_client.get('/api/admin/questions').get_json()['rows']) == 1


def test_question_of_other_team(admin_client, store):
    qid = store.add_question('B only', team='B')

    assert admin_client.get(f'/api/admin/questions/{qid}').status_code == 403
    assert admin_client.get('/api/admin/questions/999').status_code == 404


def test_clear_requires_confirmation(admin_client, store):
    store.add_question('A1')
    store.add_question('A2')
    store.add_question('B1', team='B')

    assert admin_client.post('/api/admin/questions/clear', json={}).status_code == 400
    resp = admin_client.post('/api/admin/questions/clear', json={'confirm': True})

    assert resp.get_json()['deleted'] == 2
    assert [q['content'] for q in store.questions.values()] == ['B1']


def _take_exam(client, login, emp_id, correct):
    client.post('/api/auth/logout')
    login(emp_id)
    started = client.post('/api/exam/start').get_json()
    answers = {q['id']: 0 if correct else 1 for q in started['questions']}
    client.post('/api/exam/submit', json={'attemptId': started['attemptId'], 'answers': answers})
    client.post('/api/auth/logout')
    return started['attemptId']


def test_results_summary_detail_and_delete(client, store, login):
    store.add_account('boss', role='admin')
    store.add_account('emp001')
    store.add_question('Q1', ['a', 'b'], correct_index=0, points=2)
    store.add_question('Q2', ['a', 'b'], correct_index=0, points=3)
    first = _take_exam(client, login, 'emp001', correct=True)
    second = _take_exam(client, login, 'emp001', correct=False)
    login('boss')

    rows = client.get('/api/admin/results').get_json()['rows']
    assert [r['id'] for r in rows] == [second, first]
    assert client.get('/api/admin/results?status=bogus').status_code == 400

    summary = client.get('/api/admin/results/summary').get_json()['rows']
    assert summary[0]['empId'] == 'emp001'
    assert (summary[0]['attempts'], summary[0]['maxScore'], summary[0]['avgScore']) == (2, 5, 2.5)

    detail = client.get(f'/api/admin/results/{second}').get_json()
    assert detail['attempt']['score'] == 0
    assert all(g['isCorrect'] is False for g in detail['graded'])

    csv_body = client.get(f'/api/admin/results/{second}/wrong.csv').data.decode('utf-8-sig')
    assert len(csv_body.strip().split('\n')) == 3

    detail_csv = client.get(f'/api/admin/results/{first}/detail.csv')
    assert detail_csv.headers['Content-Disposition'] == f'attachment; filename="result_{first}.csv"'
    detail_lines = detail_csv.data.decode('utf-8-sig').strip().split('\n')
    assert detail_lines[0] == 'attempt_id,emp_id,status,started_at,submitted_at,question_id,question,selected,correct,result'
    assert len(detail_lines) == 3
    assert all(line.endswith(',1,1,correct') for line in detail_lines[1:])

    listing = client.get('/api/admin/results.csv')
    assert listing.data.startswith(codecs.BOM_UTF8)
    listing_lines = listing.data.decode('utf-8-sig').strip().split('\n')
    assert listing_lines[0] == 'id,emp_id,team,status,score,total_points,started_at,submitted_at'
    assert [line.split(',')[:6] for line in listing_lines[1:]] == [
        [str(second), 'emp001', 'A', 'submitted', '0', '5'],
        [str(first), 'emp001', 'A', 'submitted', '5', '5'],
    ]

    wrong = client.get('/api/admin/accounts/emp001/wrong').get_json()
    assert wrong['count'] == 2
    assert {m['miss_count'] for m in wrong['mostMissed']} == {1}

    ranking = client.get('/api/admin/accounts/emp001/wrong.csv?view=ranking').data.decode('utf-8-sig')
    assert ranking.startswith('question_id,question,miss_count,points\n')

    assert client.delete(f'/api/admin/results/{first}').status_code == 200
    assert first not in store.attempts
    assert client.get(f'/api/admin/results/{first}').status_code == 404


def test_analytics(admin_client, store):
    store.add_question('Q1')
    store.add_question('Q2', is_active=False)

    data = admin_client.get('/api/admin/analytics').get_json()

    assert data['team'] == 'A'
    assert data['question_count'] == 2
    assert data['active_question_count'] == 1
    assert data['submitted_attempt_count'] == 0


@pytest.mark.parametrize('points', ['many', 2.5, True, [3]])
def test_non_integer_points_are_rejected(admin_client, store, points):
    resp = admin_client.post('/api/admin/questions', json={
        'content': 'Q', 'choices': ['a', 'b'], 'correct_index': 0, 'points': points,
    })

    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'INVALID_INPUT'
    assert store.questions == {}


def test_unsubmitted_attempt_detail_csv_is_refused(client, store, login):
    store.add_account('boss', role='admin')
    store.add_account('emp001')
    store.add_question('Q1')
    login('emp001')
    attempt_id = client.post('/api/exam/start').get_json()['attemptId']
    client.post('/api/auth/logout')
    login('boss')

    assert client.get(f'/api/admin/results/{attempt_id}/detail.csv').status_code == 409
    assert client.get(f'/api/admin/results/{attempt_id}').status_code == 409
    assert client.get('/api/admin/results.csv').data.decode('utf-8-sig').count('in_progress') == 1
