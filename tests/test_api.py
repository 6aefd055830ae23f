"""
Tests for the remote endpoint client with a mocked requests.Session.
"""
import json
from unittest.mock import Mock, patch

import pytest
import requests

from reysol_attendance.api import RemoteSyncClient
from reysol_attendance.errors import (
    HttpError,
    ParseError,
    RemoteError,
    SyncError,
    SyncTimeoutError,
)


URL = 'https://example.invalid/exec'


def make_response(status_code=200, body=None, reason='OK'):
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def notices():
    return []


@pytest.fixture
def client(notices):
    remote = RemoteSyncClient(URL, timeout=30, notifier=notices.append)
    remote.session = Mock()
    return remote


# ============================================================================
# Fetch
# ============================================================================

class TestFetchSnapshot:
    """Tests for fetching the full snapshot."""

    def test_success(self, client):
        client.session.get.return_value = make_response(body={
            'members': [{'name': '田中', 'section': 1}],
            'matches': [{'id': 1001, 'date': '2025-03-01', 'opponent': '浦和', 'location': 'home'}],
            'attendance': {'1001_田中': {'status': 1}},
            'settings': {'matchLimit': 5, 'leagues': '[]'},
        })

        snapshot = client.fetch_snapshot()

        assert [m.name for m in snapshot.members] == ['田中']
        assert snapshot.attendance.get(1001, '田中').status == 1
        assert snapshot.match_limit == 5

        args, kwargs = client.session.get.call_args
        assert args == (URL,)
        assert kwargs['timeout'] == 30
        assert isinstance(kwargs['params']['t'], int)

    def test_timeout(self, client):
        client.session.get.side_effect = requests.Timeout()

        with pytest.raises(SyncTimeoutError) as exc_info:
            client.fetch_snapshot()
        assert exc_info.value.timeout == 30

    def test_http_error(self, client):
        client.session.get.return_value = make_response(status_code=500, reason='Server Error')

        with pytest.raises(HttpError) as exc_info:
            client.fetch_snapshot()
        assert exc_info.value.status_code == 500
        assert 'status: 500' in str(exc_info.value)

    def test_invalid_json(self, client):
        client.session.get.return_value = make_response(body=ValueError('Expecting value'))

        with pytest.raises(ParseError):
            client.fetch_snapshot()

    def test_wrong_shape_parts_take_defaults(self, client):
        client.session.get.return_value = make_response(body={
            'members': 5,
            'matches': ['not a match'],
            'attendance': [],
            'settings': 'oops',
        })

        snapshot = client.fetch_snapshot()

        assert snapshot.members == []
        assert snapshot.matches == []
        assert len(snapshot.attendance) == 0

    def test_undecodable_body_is_a_parse_error(self, client):
        client.session.get.return_value = make_response(body={'members': []})

        with patch('reysol_attendance.api.Snapshot.from_remote_dict', side_effect=AttributeError('bad')):
            with pytest.raises(ParseError):
                client.fetch_snapshot()

    def test_connection_error(self, client):
        client.session.get.side_effect = requests.ConnectionError('no route')

        with pytest.raises(SyncError):
            client.fetch_snapshot()


# ============================================================================
# Mutations
# ============================================================================

class TestSendMutation:
    """Tests for posting mutations."""

    def test_success(self, client, notices):
        client.session.post.return_value = make_response(body={'result': 'success'})

        assert client.send_mutation('delete_member', {'name': '田中'}) is True

        _, kwargs = client.session.post.call_args
        assert kwargs['headers']['Content-Type'] == 'text/plain;charset=utf-8'
        assert json.loads(kwargs['data'].decode('utf-8')) == {'action': 'delete_member', 'name': '田中'}
        assert notices == []

    def test_server_error_is_reported(self, client, notices):
        client.session.post.return_value = make_response(body={'result': 'error', 'error': 'boom'})

        assert client.send_mutation('add_member', {'name': '田中'}) is False
        assert notices == ['保存に失敗しました: boom']

    def test_missing_error_message(self, client, notices):
        client.session.post.return_value = make_response(body={'result': 'error'})

        assert client.send_mutation('add_member', {'name': '田中'}) is False
        assert notices == ['保存に失敗しました: Unknown server error']

    def test_transport_failure_never_raises(self, client, notices):
        client.session.post.side_effect = requests.ConnectionError('offline')

        assert client.send_mutation('add_member', {'name': '田中'}) is False
        assert len(notices) == 1


# ============================================================================
# Admin
# ============================================================================

class TestAdmin:
    """Tests for admin password actions."""

    def test_verify_admin(self, client):
        client.session.post.return_value = make_response(
            body={'result': 'success', 'data': {'success': True}})

        assert client.verify_admin('secret') is True
        _, kwargs = client.session.post.call_args
        assert json.loads(kwargs['data']) == {'action': 'verify_admin', 'password': 'secret'}

    def test_verify_admin_wrong_password(self, client):
        client.session.post.return_value = make_response(
            body={'result': 'success', 'data': {'success': False}})

        assert client.verify_admin('nope') is False

    def test_update_admin_password_rejected(self, client):
        client.session.post.return_value = make_response(
            body={'result': 'error', 'error': '現在のパスワードが違います'})

        with pytest.raises(RemoteError, match='現在のパスワード'):
            client.update_admin_password('old', 'newpass')

    def test_update_admin_password_payload(self, client):
        client.session.post.return_value = make_response(body={'result': 'success'})

        client.update_admin_password('old', 'newpass')

        _, kwargs = client.session.post.call_args
        assert json.loads(kwargs['data']) == {
            'action': 'update_admin_password', 'oldPassword': 'old', 'newPassword': 'newpass',
        }
