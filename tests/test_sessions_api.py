from promotion_engine.extensions import db
from promotion_engine.models import AcademicSession

SCHOOL_ID = "SCH001"


def _create(client, year, start=None, end=None, school_id=SCHOOL_ID):
    return client.post('/api/sessions', json={
        'schoolId': school_id, 'year': year, 'startDate': start, 'endDate': end,
    })


def test_create_session(client):
    resp = _create(client, '2024-25', '2024-04-01', '2025-03-31')
    assert resp.status_code == 201
    assert resp.json['year'] == '2024-25'
    assert resp.json['isActive'] is False
    assert resp.json['startDate'] == '2024-04-01'


def test_create_session_requires_year(client):
    resp = client.post('/api/sessions', json={'schoolId': SCHOOL_ID})
    assert resp.status_code == 400
    assert resp.json['error'] == 'VALIDATION_ERROR'
    assert 'year' in resp.json['details']


def test_create_session_rejects_reversed_dates(client):
    resp = _create(client, '2024-25', '2025-03-31', '2024-04-01')
    assert resp.status_code == 400


def test_create_duplicate_session(client):
    _create(client, '2024-25')
    resp = _create(client, '2024-25')
    assert resp.status_code == 400
    assert AcademicSession.query.count() == 1


def test_list_sessions_requires_school(client):
    resp = client.get('/api/sessions')
    assert resp.status_code == 400


def test_list_sessions_in_order(client):
    _create(client, '2025-26', '2025-04-01')
    _create(client, '2024-25', '2024-04-01')
    resp = client.get(f'/api/sessions?schoolId={SCHOOL_ID}')
    assert resp.status_code == 200
    assert [s['year'] for s in resp.json['sessions']] == ['2024-25', '2025-26']


def test_active_session_before_any_activation(client):
    _create(client, '2024-25')
    resp = client.get(f'/api/sessions/active?schoolId={SCHOOL_ID}')
    assert resp.status_code == 200
    assert resp.json['session'] is None
    assert resp.json['version'] == 0
    assert resp.headers['ETag'] == '"0"'


def test_activate_and_read_back(client):
    first = _create(client, '2024-25').json
    second = _create(client, '2025-26').json

    resp = client.patch(f"/api/sessions/{first['id']}", json={'schoolId': SCHOOL_ID, 'isActive': True})
    assert resp.status_code == 200
    assert resp.json['changed'] is True
    etag = resp.headers['ETag']

    resp = client.patch(
        f"/api/sessions/{second['id']}",
        json={'schoolId': SCHOOL_ID, 'isActive': True},
        headers={'If-Match': etag},
    )
    assert resp.status_code == 200

    resp = client.get(f'/api/sessions/active?schoolId={SCHOOL_ID}')
    assert resp.json['session']['id'] == second['id']
    assert resp.headers['ETag'] == f'"{resp.json["version"]}"'

    db.session.expire_all()
    assert AcademicSession.query.filter_by(is_active=True).count() == 1


def test_activate_with_stale_etag_conflicts(client):
    first = _create(client, '2024-25').json
    second = _create(client, '2025-26').json
    client.patch(f"/api/sessions/{first['id']}", json={'schoolId': SCHOOL_ID, 'isActive': True})
    stale = client.get(f'/api/sessions/active?schoolId={SCHOOL_ID}').headers['ETag']
    client.patch(f"/api/sessions/{second['id']}", json={'schoolId': SCHOOL_ID, 'isActive': True})

    resp = client.patch(
        f"/api/sessions/{first['id']}",
        json={'schoolId': SCHOOL_ID, 'isActive': True},
        headers={'If-Match': stale},
    )
    assert resp.status_code == 409
    assert resp.json['error'] == 'CONFLICT'

    active = client.get(f'/api/sessions/active?schoolId={SCHOOL_ID}').json['session']
    assert active['id'] == second['id']


def test_activate_with_expected_version_in_body(client):
    first = _create(client, '2024-25').json
    resp = client.patch(
        f"/api/sessions/{first['id']}",
        json={'schoolId': SCHOOL_ID, 'isActive': True, 'expectedVersion': 3},
    )
    assert resp.status_code == 409


def test_deactivate_is_not_supported(client):
    first = _create(client, '2024-25').json
    resp = client.patch(f"/api/sessions/{first['id']}", json={'schoolId': SCHOOL_ID, 'isActive': False})
    assert resp.status_code == 400


def test_activate_unknown_session(client):
    resp = client.patch('/api/sessions/999', json={'schoolId': SCHOOL_ID, 'isActive': True})
    assert resp.status_code == 404


def test_malformed_if_match(client):
    first = _create(client, '2024-25').json
    resp = client.patch(
        f"/api/sessions/{first['id']}",
        json={'schoolId': SCHOOL_ID, 'isActive': True},
        headers={'If-Match': 'banana'},
    )
    assert resp.status_code == 400


def test_next_session_endpoint(client):
    first = _create(client, '2024-25', '2024-04-01').json
    second = _create(client, '2025-26', '2025-04-01').json

    resp = client.get(f"/api/sessions/{first['id']}/next?schoolId={SCHOOL_ID}")
    assert resp.status_code == 200
    assert resp.json['session']['id'] == second['id']

    resp = client.get(f"/api/sessions/{second['id']}/next?schoolId={SCHOOL_ID}")
    assert resp.status_code == 404


def test_activation_log_endpoint(client):
    first = _create(client, '2024-25').json
    client.patch(f"/api/sessions/{first['id']}", json={'schoolId': SCHOOL_ID, 'isActive': True})

    resp = client.get(f'/api/sessions/activations?schoolId={SCHOOL_ID}')
    assert resp.status_code == 200
    assert [a['sessionId'] for a in resp.json['activations']] == [first['id']]
