from datetime import timedelta

from backend.core.clock import utcnow
from backend.models.competition import Competition, CompetitionParticipant


def competition_payload(**overrides) -> dict:
    start = utcnow() + timedelta(days=2)
    payload = {
        'title': 'Math Olympiad',
        'description': 'Algebra and geometry problems.',
        'category': 'math',
        'difficulty': 'Medium',
        'start_date': start.isoformat(),
        'end_date': (start + timedelta(hours=3)).isoformat(),
        'prizes': [{'rank': 1, 'description': 'Gold medal'}],
    }
    payload.update(overrides)
    return payload


def make_competition(persist, host, **overrides) -> Competition:
    start = utcnow() + timedelta(days=2)
    fields = {
        'title': 'Spelling Bee',
        'description': 'Spell the words.',
        'category': 'english',
        'difficulty': 'easy',
        'start_date': start,
        'end_date': start + timedelta(hours=2),
        'rules': [],
        'prizes': [],
        'host_kind': host.principal_kind.value,
        'host_id': host.id,
    }
    fields.update(overrides)
    return persist(Competition(**fields))


def test_any_principal_can_host(client, make_user, make_mentor, make_school, auth_headers) -> None:
    for host in (make_user(), make_mentor(), make_school()):
        response = client.post('/competitions/', json=competition_payload(), headers=auth_headers(host))

        assert response.status_code == 201
        assert response.json()['host_kind'] == host.principal_kind.value
        assert response.json()['host_id'] == host.id
        assert response.json()['difficulty'] == 'medium'


def test_create_requires_token_and_valid_schedule(client, make_mentor, auth_headers) -> None:
    start = utcnow() + timedelta(days=2)

    anonymous = client.post('/competitions/', json=competition_payload())
    backwards = client.post(
        '/competitions/',
        json=competition_payload(end_date=(start - timedelta(hours=1)).isoformat(), start_date=start.isoformat()),
        headers=auth_headers(make_mentor()),
    )

    assert anonymous.status_code == 401
    assert backwards.status_code == 400


def test_list_filters_by_status_and_category(client, persist, make_mentor) -> None:
    mentor = make_mentor()
    upcoming = make_competition(persist, mentor, category='math')
    make_competition(persist, mentor, category='math', status='completed')
    make_competition(persist, mentor, category='art')

    response = client.get('/competitions/', params={'category': 'math', 'status': 'upcoming'})

    assert [item['id'] for item in response.json()] == [upcoming.id]


def test_update_is_limited_to_host_or_admin(client, persist, make_mentor, make_user, auth_headers) -> None:
    host = make_mentor()
    competition = make_competition(persist, host)

    stranger = client.put(f'/competitions/{competition.id}', json={'title': 'Hijacked'}, headers=auth_headers(make_mentor()))
    same_id_wrong_kind = client.put(
        f'/competitions/{competition.id}',
        json={'title': 'Hijacked'},
        headers=auth_headers(make_user(id=host.id, email='clash@example.com')),
    )
    admin = client.put(
        f'/competitions/{competition.id}',
        json={'title': 'Renamed'},
        headers=auth_headers(make_user(role='admin')),
    )
    missing = client.put('/competitions/missing', json={'title': 'x'}, headers=auth_headers(make_mentor()))

    assert stranger.status_code == 403
    assert same_id_wrong_kind.status_code == 403
    assert admin.json()['title'] == 'Renamed'
    assert missing.status_code == 404


def test_register_rules(client, persist, make_mentor, make_user, auth_headers) -> None:
    mentor = make_mentor()
    competition = make_competition(persist, mentor, max_participants=1)
    first = make_user()
    second = make_user()

    registered = client.post(f'/competitions/{competition.id}/register', headers=auth_headers(first))
    duplicate = client.post(f'/competitions/{competition.id}/register', headers=auth_headers(first))
    full = client.post(f'/competitions/{competition.id}/register', headers=auth_headers(second))
    mentor_attempt = client.post(f'/competitions/{competition.id}/register', headers=auth_headers(mentor))

    assert registered.status_code == 201
    assert duplicate.status_code == 400
    assert full.json() == {'message': 'Competition is full'}
    assert mentor_attempt.status_code == 403


def test_register_after_deadline_is_closed(client, persist, make_mentor, make_user, auth_headers) -> None:
    competition = make_competition(
        persist,
        make_mentor(),
        registration_deadline=utcnow() - timedelta(hours=1),
    )

    response = client.post(f'/competitions/{competition.id}/register', headers=auth_headers(make_user()))

    assert response.status_code == 400


def test_submit_only_while_running(client, persist, make_mentor, make_user, auth_headers) -> None:
    now = utcnow()
    running = make_competition(persist, make_mentor(), start_date=now - timedelta(hours=1), end_date=now + timedelta(hours=1))
    student = make_user()
    outsider = make_user()
    persist(CompetitionParticipant(competition_id=running.id, user_id=student.id))

    submitted = client.post(
        f'/competitions/{running.id}/submit',
        json={'submission_url': 'https://example.com/entry'},
        headers=auth_headers(student),
    )
    unregistered = client.post(
        f'/competitions/{running.id}/submit',
        json={'submission_url': 'https://example.com/entry'},
        headers=auth_headers(outsider),
    )

    assert submitted.status_code == 200
    assert submitted.json()['submitted_at'] is not None
    assert unregistered.status_code == 403


def test_results_rank_by_score_after_end(client, persist, make_mentor, make_user, auth_headers) -> None:
    now = utcnow()
    host = make_mentor()
    finished = make_competition(persist, host, start_date=now - timedelta(days=1), end_date=now - timedelta(hours=1))
    alice = make_user()
    bob = make_user()
    outsider = make_user()
    for student in (alice, bob):
        persist(CompetitionParticipant(competition_id=finished.id, user_id=student.id))

    stray = client.post(
        f'/competitions/{finished.id}/results',
        json={'results': [{'user_id': outsider.id, 'score': 99}]},
        headers=auth_headers(host),
    )
    response = client.post(
        f'/competitions/{finished.id}/results',
        json={'results': [{'user_id': alice.id, 'score': 70}, {'user_id': bob.id, 'score': 90}]},
        headers=auth_headers(host),
    )

    assert stray.status_code == 400
    assert [(item['user_id'], item['rank']) for item in response.json()] == [(bob.id, 1), (alice.id, 2)]
    assert client.get(f'/competitions/{finished.id}').json()['status'] == 'completed'


def test_results_with_repeated_participant_are_rejected(client, db, persist, make_mentor, make_user, auth_headers) -> None:
    now = utcnow()
    host = make_mentor()
    finished = make_competition(persist, host, start_date=now - timedelta(days=1), end_date=now - timedelta(hours=1))
    alice = make_user()
    persist(CompetitionParticipant(competition_id=finished.id, user_id=alice.id))

    response = client.post(
        f'/competitions/{finished.id}/results',
        json={'results': [{'user_id': alice.id, 'score': 90}, {'user_id': alice.id, 'score': 40}]},
        headers=auth_headers(host),
    )

    assert response.status_code == 400
    assert response.json() == {'message': 'Each participant can only appear once in the results'}
    participant = db.query(CompetitionParticipant).filter(CompetitionParticipant.user_id == alice.id).one()
    assert participant.score is None
    assert participant.rank is None
    assert client.get(f'/competitions/{finished.id}').json()['status'] != 'completed'


def test_results_before_end_are_rejected(client, persist, make_mentor, auth_headers) -> None:
    host = make_mentor()
    competition = make_competition(persist, host)

    response = client.post(f'/competitions/{competition.id}/results', json={'results': []}, headers=auth_headers(host))

    assert response.status_code == 400


def test_delete_removes_participants(client, db, persist, make_school, make_user, auth_headers) -> None:
    host = make_school()
    competition = make_competition(persist, host)
    persist(CompetitionParticipant(competition_id=competition.id, user_id=make_user().id))

    response = client.delete(f'/competitions/{competition.id}', headers=auth_headers(host))

    assert response.status_code == 204
    assert db.query(CompetitionParticipant).count() == 0
