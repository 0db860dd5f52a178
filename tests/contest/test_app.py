import pytest
from fastapi.testclient import TestClient

from contest.database import get_db
from contest.main import app
from contest.models import Role
from contest.services.mail import NotificationKind, get_mailer
from contest.services.storage import get_storage

PASSWORD = 'secret123'


@pytest.fixture
def client(db, storage, mailer):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_mailer] = lambda: mailer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _auth(token: str) -> dict:
    return {'Authorization': f'Bearer {token}'}


def test_health_check(client) -> None:
    response = client.get('/')

    assert response.status_code == 200
    assert response.json() == {'status': 'Contest API Running'}


def test_student_registers_and_submits_a_work(client, mailer, storage) -> None:
    registered = client.post(
        '/api/auth/register',
        json={
            'email': 'pupil@example.com',
            'password': PASSWORD,
            'full_name': 'Иван Петров',
            'school': 'Школа №5',
            'grade': '7А',
            'privacy_accepted': True,
        },
    )
    assert registered.status_code == 201
    token = registered.json()['access_token']

    created = client.post(
        '/api/works',
        data={'title': 'Letter to my great-grandfather', 'nomination': 'vov', 'work_type': 'essay'},
        files={'file': ('letter.pdf', b'%PDF-1.4 entry', 'application/pdf')},
        headers=_auth(token),
    )
    assert created.status_code == 201
    assert created.json()['status'] == 'moderation'

    mine = client.get('/api/works/my', headers=_auth(token))
    assert [work['title'] for work in mine.json()] == ['Letter to my great-grandfather']

    assert [kind for kind, _, _ in mailer.sent] == [NotificationKind.REGISTRATION, NotificationKind.WORK_SUBMITTED]
    assert len(storage.objects) == 1


def test_request_validation_returns_422(client) -> None:
    response = client.post('/api/auth/register', json={'email': 'not-an-email', 'password': '1'})

    assert response.status_code == 422


def test_student_cannot_reach_admin_routes(client, make_user) -> None:
    make_user(email='pupil@example.com')
    token = client.post('/api/auth/login', json={'email': 'pupil@example.com', 'password': PASSWORD}).json()[
        'access_token'
    ]

    response = client.get('/api/admin/statistics', headers=_auth(token))

    assert response.status_code == 403


def test_public_settings_and_admin_update(client, make_user) -> None:
    make_user(role=Role.ADMIN, email='admin@example.com')
    token = client.post('/api/auth/login', json={'email': 'admin@example.com', 'password': PASSWORD}).json()[
        'access_token'
    ]

    updated = client.patch('/api/settings', json={'max_score': 25}, headers=_auth(token))
    assert updated.status_code == 200

    public = client.get('/api/settings').json()
    assert public['max_score'] == 25
    assert client.get('/api/settings/submission-status').json()['is_open'] is True


def test_export_is_served_as_attachment(client, make_user) -> None:
    make_user(role=Role.ADMIN, email='admin@example.com')
    token = client.post('/api/auth/login', json={'email': 'admin@example.com', 'password': PASSWORD}).json()[
        'access_token'
    ]

    response = client.get('/api/admin/export/works', headers=_auth(token))

    assert response.status_code == 200
    assert response.headers['content-disposition'].startswith('attachment; filename="works_')
