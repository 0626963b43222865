from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from backend.routes.shared import DATABASE_UNAVAILABLE_MESSAGE


def test_health_check(client) -> None:
    response = client.get('/')

    assert response.status_code == 200
    assert response.json() == {'status': 'E-Learning API Running'}


def test_http_errors_use_message_body(client) -> None:
    response = client.get('/courses/missing')

    assert response.status_code == 404
    assert response.json() == {'message': 'Course not found'}


def test_validation_errors_are_400_with_details(client) -> None:
    response = client.post('/users/register', json={'email': 'someone@example.com'})

    assert response.status_code == 400
    body = response.json()
    assert body['message'] == 'Validation failed'
    assert {tuple(item['loc'])[-1] for item in body['details']} >= {'first_name', 'password'}


def test_unhandled_database_errors_become_503(app, client) -> None:
    def broken_route():
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    app.add_api_route('/broken', broken_route)

    response = client.get('/broken')

    assert response.status_code == 503
    assert response.json() == {'message': DATABASE_UNAVAILABLE_MESSAGE}


def test_startup_and_shutdown_manage_the_store(app) -> None:
    with TestClient(app) as managed:
        assert managed.get('/').status_code == 200
        assert app.state.store._schema_checked is True

    assert app.state.store._engine is None
