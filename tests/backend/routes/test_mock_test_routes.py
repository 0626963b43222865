import pytest
from pydantic import ValidationError

from backend.models.mock_test import MockTest, MockTestAttempt
from backend.routes.mock_test_routes import QuestionPayload, score_answers


def question(**overrides) -> dict:
    payload = {
        'question': 'What is 2 + 2?',
        'options': ['3', '4', '5', '22'],
        'correct_answer': 1,
        'points': 1,
    }
    payload.update(overrides)
    return payload


def make_mock_test(persist, mentor, course, **overrides) -> MockTest:
    fields = {
        'title': 'Algebra check',
        'course_id': course.id,
        'created_by': mentor.id,
        'passing_score': 60,
        'questions': [question(), question(question='What is 3 * 3?', options=['6', '9', '12', '33'], correct_answer=1, points=3)],
    }
    fields.update(overrides)
    return persist(MockTest(**fields))


@pytest.mark.parametrize(
    'overrides',
    [
        {'options': ['a', 'b', 'c']},
        {'correct_answer': 4},
        {'correct_answer': -1},
        {'points': 0},
        {'question': '   '},
    ],
)
def test_question_payload_rejects_invalid_questions(overrides) -> None:
    with pytest.raises(ValidationError):
        QuestionPayload(**question(**overrides))


def test_score_answers_weights_points_and_ignores_missing() -> None:
    questions = [question(points=1), question(points=3, correct_answer=2)]

    assert score_answers(questions, [1, 2]) == (4, 4)
    assert score_answers(questions, [1]) == (1, 4)
    assert score_answers(questions, [None, 7]) == (0, 4)


def test_create_requires_own_course(client, make_mentor, make_course, auth_headers) -> None:
    owner = make_mentor()
    other = make_mentor()
    course = make_course(owner)
    payload = {'title': 'Quiz', 'course_id': course.id, 'questions': [question()]}

    forbidden = client.post('/mock-tests/', json=payload, headers=auth_headers(other))
    created = client.post('/mock-tests/', json=payload, headers=auth_headers(owner))
    empty = client.post('/mock-tests/', json={**payload, 'questions': []}, headers=auth_headers(owner))

    assert forbidden.status_code == 403
    assert created.status_code == 201
    assert created.json()['questions'][0]['correct_answer'] == 1
    assert empty.status_code == 400


def test_public_views_hide_answers(client, persist, make_mentor, make_course, make_user, auth_headers) -> None:
    mentor = make_mentor()
    mock_test = make_mock_test(persist, mentor, make_course(mentor))

    listing = client.get('/mock-tests/')
    started = client.post(f'/mock-tests/{mock_test.id}/start', headers=auth_headers(make_user()))

    assert listing.json()[0]['questions'] == []
    assert started.status_code == 200
    assert [item['index'] for item in started.json()['questions']] == [0, 1]
    assert all('correct_answer' not in item for item in started.json()['questions'])


def test_full_test_is_owner_or_admin_only(client, persist, make_mentor, make_course, make_user, auth_headers) -> None:
    mentor = make_mentor()
    mock_test = make_mock_test(persist, mentor, make_course(mentor))

    assert client.get(f'/mock-tests/{mock_test.id}', headers=auth_headers(make_user())).status_code == 403
    assert client.get(f'/mock-tests/{mock_test.id}', headers=auth_headers(mentor)).status_code == 200
    assert client.get(f'/mock-tests/{mock_test.id}', headers=auth_headers(make_user(role='admin'))).status_code == 200
    assert client.get('/mock-tests/missing', headers=auth_headers(make_user())).status_code == 404


def test_submit_scores_and_updates_average(client, db, persist, make_mentor, make_course, make_user, auth_headers) -> None:
    mentor = make_mentor()
    mock_test = make_mock_test(persist, mentor, make_course(mentor))
    strong = make_user()
    weak = make_user()

    passed = client.post(f'/mock-tests/{mock_test.id}/submit', json={'answers': [1, 1]}, headers=auth_headers(strong))
    failed = client.post(f'/mock-tests/{mock_test.id}/submit', json={'answers': [1, 0]}, headers=auth_headers(weak))

    assert passed.json()['score'] == 4
    assert passed.json()['percentage'] == 100
    assert passed.json()['passed'] is True
    assert failed.json()['percentage'] == 25
    assert failed.json()['passed'] is False
    stored = db.get(MockTest, mock_test.id)
    assert stored.total_attempts == 2
    assert stored.average_score == 62.5


def test_second_submission_conflicts(client, persist, make_mentor, make_course, make_user, auth_headers) -> None:
    mentor = make_mentor()
    mock_test = make_mock_test(persist, mentor, make_course(mentor))
    headers = auth_headers(make_user())

    client.post(f'/mock-tests/{mock_test.id}/submit', json={'answers': [1, 1]}, headers=headers)
    resubmit = client.post(f'/mock-tests/{mock_test.id}/submit', json={'answers': [0, 0]}, headers=headers)
    restart = client.post(f'/mock-tests/{mock_test.id}/start', headers=headers)

    assert resubmit.status_code == 409
    assert restart.status_code == 409


def test_start_then_submit_reuses_attempt(client, db, persist, make_mentor, make_course, make_user, auth_headers) -> None:
    mentor = make_mentor()
    mock_test = make_mock_test(persist, mentor, make_course(mentor))
    headers = auth_headers(make_user())

    client.post(f'/mock-tests/{mock_test.id}/start', headers=headers)
    client.post(f'/mock-tests/{mock_test.id}/start', headers=headers)
    client.post(f'/mock-tests/{mock_test.id}/submit', json={'answers': [1, 1]}, headers=headers)

    assert db.query(MockTestAttempt).count() == 1


def test_inactive_test_cannot_be_taken(client, persist, make_mentor, make_course, make_user, auth_headers) -> None:
    mentor = make_mentor()
    mock_test = make_mock_test(persist, mentor, make_course(mentor), is_active=False)

    response = client.post(f'/mock-tests/{mock_test.id}/start', headers=auth_headers(make_user()))

    assert response.status_code == 400


def test_results_views(client, persist, make_mentor, make_course, make_user, auth_headers) -> None:
    mentor = make_mentor()
    mock_test = make_mock_test(persist, mentor, make_course(mentor))
    student = make_user()
    client.post(f'/mock-tests/{mock_test.id}/submit', json={'answers': [1, 1]}, headers=auth_headers(student))

    mine = client.get('/mock-tests/results', headers=auth_headers(student))
    owner_view = client.get(f'/mock-tests/{mock_test.id}/results', headers=auth_headers(mentor))
    student_view = client.get(f'/mock-tests/{mock_test.id}/results', headers=auth_headers(student))

    assert [item['mock_test_id'] for item in mine.json()] == [mock_test.id]
    assert [item['user_id'] for item in owner_view.json()] == [student.id]
    assert student_view.status_code == 403
