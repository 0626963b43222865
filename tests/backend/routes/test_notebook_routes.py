from backend.models.course import CourseEnrollment


def test_create_requires_premium_or_enrollment(client, persist, make_user, make_mentor, make_course, auth_headers) -> None:
    free_student = make_user()
    premium_student = make_user(is_premium=True)
    enrolled_student = make_user()
    persist(CourseEnrollment(user_id=enrolled_student.id, course_id=make_course(make_mentor()).id))

    denied = client.post('/notebooks/', json={'title': 'Notes'}, headers=auth_headers(free_student))
    premium = client.post('/notebooks/', json={'title': 'Notes'}, headers=auth_headers(premium_student))
    enrolled = client.post('/notebooks/', json={'title': 'Notes'}, headers=auth_headers(enrolled_student))
    mentor = client.post('/notebooks/', json={'title': 'Notes'}, headers=auth_headers(make_mentor()))

    assert denied.status_code == 403
    assert denied.json() == {'message': 'Access denied. Premium or course registration required.'}
    assert premium.status_code == 201
    assert premium.json()['owner_kind'] == 'user'
    assert enrolled.status_code == 201
    assert mentor.status_code == 403


def test_private_notebook_visibility(client, make_user, auth_headers) -> None:
    owner = make_user(is_premium=True)
    notebook = client.post('/notebooks/', json={'title': 'Secret'}, headers=auth_headers(owner)).json()

    anonymous = client.get(f'/notebooks/{notebook["id"]}')
    stranger = client.get(f'/notebooks/{notebook["id"]}', headers=auth_headers(make_user()))
    own = client.get(f'/notebooks/{notebook["id"]}', headers=auth_headers(owner))

    assert anonymous.status_code == 403
    assert stranger.status_code == 403
    assert own.status_code == 200
    assert client.get('/notebooks/missing').status_code == 404


def test_share_toggles_and_sets_visibility(client, make_user, auth_headers) -> None:
    owner = make_user(is_premium=True)
    headers = auth_headers(owner)
    notebook = client.post('/notebooks/', json={'title': 'Shared'}, headers=headers).json()

    toggled = client.put(f'/notebooks/{notebook["id"]}/share', headers=headers)
    explicit = client.put(f'/notebooks/{notebook["id"]}/share', json={'is_public': True}, headers=headers)

    assert toggled.json()['is_public'] is True
    assert explicit.json()['is_public'] is True
    assert [item['id'] for item in client.get('/notebooks/public').json()] == [notebook['id']]
    assert client.get(f'/notebooks/{notebook["id"]}').status_code == 200


def test_collaborators_edit_but_cannot_change_visibility(client, make_user, auth_headers) -> None:
    owner = make_user(is_premium=True)
    collaborator = make_user()
    notebook = client.post('/notebooks/', json={'title': 'Team'}, headers=auth_headers(owner)).json()
    url = f'/notebooks/{notebook["id"]}'

    added = client.post(f'{url}/collaborators', json={'user_id': collaborator.id}, headers=auth_headers(owner))
    duplicate = client.post(f'{url}/collaborators', json={'user_id': collaborator.id}, headers=auth_headers(owner))
    edited = client.put(url, json={'content': 'print(1)'}, headers=auth_headers(collaborator))
    visibility = client.put(url, json={'is_public': True}, headers=auth_headers(collaborator))
    delete = client.delete(url, headers=auth_headers(collaborator))

    assert added.json()['collaborators'] == [collaborator.id]
    assert duplicate.status_code == 400
    assert edited.json()['content'] == 'print(1)'
    assert visibility.status_code == 403
    assert delete.status_code == 403


def test_admin_has_no_override_on_notebooks(client, make_user, auth_headers) -> None:
    owner = make_user(is_premium=True)
    notebook = client.post('/notebooks/', json={'title': 'Mine'}, headers=auth_headers(owner)).json()

    response = client.delete(f'/notebooks/{notebook["id"]}', headers=auth_headers(make_user(role='admin')))

    assert response.status_code == 403


def test_remove_collaborator_and_delete(client, make_user, auth_headers) -> None:
    owner = make_user(is_premium=True)
    collaborator = make_user()
    headers = auth_headers(owner)
    notebook = client.post('/notebooks/', json={'title': 'Team'}, headers=headers).json()
    url = f'/notebooks/{notebook["id"]}'
    client.post(f'{url}/collaborators', json={'user_id': collaborator.id}, headers=headers)

    removed = client.delete(f'{url}/collaborators/{collaborator.id}', headers=headers)
    missing = client.delete(f'{url}/collaborators/{collaborator.id}', headers=headers)
    deleted = client.delete(url, headers=headers)

    assert removed.json()['collaborators'] == []
    assert missing.status_code == 404
    assert deleted.status_code == 204
    assert client.get('/notebooks/', headers=headers).json() == []


def test_unsupported_language_is_rejected(client, make_user, auth_headers) -> None:
    response = client.post(
        '/notebooks/',
        json={'language': 'cobol'},
        headers=auth_headers(make_user(is_premium=True)),
    )

    assert response.status_code == 400
    assert response.json()['message'] == 'Validation failed'
