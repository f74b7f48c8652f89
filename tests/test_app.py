"""
Tests for the HTTP surface.
"""
import pytest

from trust_engine.app import create_app


@pytest.fixture
def client(config, engine):
    app = create_app(config, engine=engine)
    app.config['TESTING'] = True
    return app.test_client()


def test_security_headers(client):
    response = client.get('/security-events/unresolved')
    assert response.headers['X-Content-Type-Options'] == 'nosniff'
    assert response.headers['X-Frame-Options'] == 'DENY'


class TestSecondFactorRoutes:

    def test_send_and_verify(self, client, sms_gateway):
        response = client.post('/2fa/send', json={
            'identity': 'u1', 'method': 'sms', 'destination': '+919800000001',
        })
        assert response.status_code == 200
        assert 'expires_at' in response.get_json()

        code = sms_gateway.last_code
        assert client.post('/2fa/verify', json={'identity': 'u1', 'code': code}).status_code == 200

        replay = client.post('/2fa/verify', json={'identity': 'u1', 'code': code})
        assert replay.status_code == 401
        assert replay.get_json()['error'] == "Invalid or expired code"

    def test_resend(self, client, sms_gateway):
        client.post('/2fa/send', json={'identity': 'u1', 'method': 'sms', 'destination': '+919800000001'})
        assert client.post('/2fa/resend', json={'identity': 'u1'}).status_code == 200
        assert len(sms_gateway.sent) == 2

    def test_resend_without_pending(self, client):
        assert client.post('/2fa/resend', json={'identity': 'u1'}).status_code == 400

    def test_rate_limited(self, client):
        for _ in range(5):
            client.post('/2fa/verify', json={'identity': 'u1', 'code': '000000'})
        response = client.post('/2fa/verify', json={'identity': 'u1', 'code': '000000'})

        assert response.status_code == 429
        body = response.get_json()
        assert body['error'].startswith("Too many attempts")
        assert 'retry_after' in body

    def test_backup_code(self, client, engine):
        codes = engine.two_factor.issue_backup_codes('u1', 2)
        response = client.post('/2fa/backup/verify', json={'identity': 'u1', 'code': codes[0]})
        assert response.status_code == 200

    def test_unknown_method(self, client):
        response = client.post('/2fa/send', json={'identity': 'u1', 'method': 'fax', 'destination': 'x'})
        assert response.status_code == 400

    def test_missing_field(self, client):
        response = client.post('/2fa/send', json={'identity': 'u1'})
        assert response.status_code == 400
        assert response.get_json()['error'] == "Missing field: method, destination"

    def test_missing_code_on_verify(self, client):
        response = client.post('/2fa/verify', json={'identity': 'u1'})
        assert response.status_code == 400
        assert response.get_json()['error'] == "Missing field: code"

    def test_non_json_body(self, client):
        response = client.post('/2fa/verify', data='code=123456')
        assert response.status_code == 400


class TestSessionRoutes:

    def start(self, client, **location):
        return client.post('/sessions', json={
            'identity': 'u1',
            'device': {'device_type': 'mobile', 'browser': 'Chrome'},
            'ip_address': '198.51.100.4',
            'location': location,
        })

    def test_lifecycle(self, client):
        response = self.start(client, country='India', city='Mumbai')
        assert response.status_code == 201
        session_id = response.get_json()['session_id']

        assert client.post(f'/sessions/{session_id}/touch').status_code == 200
        listed = client.get('/users/u1/sessions').get_json()['sessions']
        assert [s['session_id'] for s in listed] == [session_id]

        assert client.delete(f'/sessions/{session_id}').status_code == 200
        assert client.get('/users/u1/sessions').get_json()['sessions'] == []
        assert client.post(f'/sessions/{session_id}/touch').status_code == 404

    def test_stats_and_terminate_all(self, client):
        self.start(client, city='Mumbai')
        self.start(client, city='Pune')

        stats = client.get('/users/u1/sessions/stats').get_json()
        assert stats['total'] == 2
        assert stats['devices'] == ['mobile']

        response = client.post('/users/u1/sessions/terminate')
        assert response.get_json()['terminated'] == 2

    def test_bad_coordinates(self, client):
        assert self.start(client, latitude=95.0, longitude=10.0).status_code == 400

    def test_string_coordinates(self, client):
        response = self.start(client, latitude='19.07', longitude='72.87')
        assert response.status_code == 400
        assert 'finite number' in response.get_json()['error']

    def test_unknown_device_type(self, client):
        response = client.post('/sessions', json={'identity': 'u1', 'device': {'device_type': 'fridge'}})
        assert response.status_code == 400

    def test_location_must_be_object(self, client):
        response = client.post('/sessions', json={'identity': 'u1', 'location': 'Mumbai'})
        assert response.status_code == 400

    def test_missing_identity(self, client):
        response = client.post('/sessions', json={'device': {}})
        assert response.get_json()['error'] == "Missing field: identity"

    def test_impossible_travel_surfaces_as_event(self, client, clock):
        self.start(client, city='Mumbai', latitude=19.0760, longitude=72.8777)
        clock.advance(minutes=5)
        self.start(client, city='Delhi', latitude=28.7041, longitude=77.1025)

        events = client.get('/users/u1/security-events').get_json()['events']
        assert [e['activity_type'] for e in events] == ['impossible_travel']

        event_id = events[0]['id']
        assert client.post(f'/security-events/{event_id}/resolve').status_code == 200
        assert client.get('/security-events/unresolved').get_json()['events'] == []


class TestActivityRoutes:

    def test_unusual_hours(self, client):
        response = client.post('/activity/viewing', json={
            'identity': 'u1', 'content_id': 'series-7', 'start_time': '2026-01-15T03:15:00+05:30',
        })
        assert response.status_code == 202
        assert response.get_json()['flagged'] is True

    def test_daytime_viewing(self, client):
        response = client.post('/activity/viewing', json={
            'identity': 'u1', 'content_id': 'series-7', 'start_time': '2026-01-15T15:00:00',
        })
        assert response.get_json()['flagged'] is False

    def test_bad_timestamp(self, client):
        response = client.post('/activity/viewing', json={
            'identity': 'u1', 'content_id': 'series-7', 'start_time': 'yesterday',
        })
        assert response.status_code == 400

    def test_resolve_unknown_event(self, client):
        assert client.post('/security-events/act_missing/resolve').status_code == 404
