"""
Tests for the reysol command-line interface.
"""
import json

import pytest
from click.testing import CliRunner

from reysol_attendance.cli import cli
from reysol_attendance.cli_output import NO_DATA, NO_USER
from reysol_attendance.snapshot import AttendanceRecord, Snapshot

from tests.conftest import AWAY_RESERVED_MATCH_ID, HOME_MATCH_ID, LEAGUE_ID


@pytest.fixture
def runner():
    return CliRunner()


def invoke(runner, app, *args):
    return runner.invoke(cli, list(args), obj={'app': app})


# ============================================================================
# Listings
# ============================================================================

class TestListings:
    """Tests for the read-only commands."""

    def test_members_table(self, runner, app):
        result = invoke(runner, app, 'members')

        assert result.exit_code == 0
        assert '田中' in result.output
        assert 'FRONT' in result.output

    def test_members_json(self, runner, app):
        result = invoke(runner, app, 'members', '--format', 'json')

        data = json.loads(result.output)
        assert data[1] == {'name': '佐藤', 'section': 'FRONT', 'current': False}

    def test_leagues_csv(self, runner, app):
        result = invoke(runner, app, 'leagues', '--format', 'csv')

        assert result.exit_code == 0
        assert result.output.splitlines()[0] == 'id,name,start,end,matches'
        assert f'{LEAGUE_ID},2025 J1,2025-02,2025-12,3' in result.output

    def test_matches_limit(self, runner, app):
        result = invoke(runner, app, 'matches', '--all', '--limit', '1', '--format', 'json')

        data = json.loads(result.output)
        assert [m['id'] for m in data] == [AWAY_RESERVED_MATCH_ID]

    def test_matches_unknown_league(self, runner, app):
        result = invoke(runner, app, 'matches', '--league', 'nope')
        assert result.exit_code == 2

    def test_empty_table(self, runner, app):
        app.snapshot = Snapshot()

        result = invoke(runner, app, 'members')

        assert NO_DATA in result.output


# ============================================================================
# Member views
# ============================================================================

class TestMemberCommands:
    """Tests for user, summary, rankings and attend."""

    def test_user_unset(self, runner, app):
        result = invoke(runner, app, 'user')
        assert NO_USER in result.output

    def test_user_set(self, runner, app, store):
        result = invoke(runner, app, 'user', '佐藤')

        assert result.exit_code == 0
        assert store.load_current_user() == '佐藤'

    def test_summary(self, runner, app):
        app.snapshot.attendance.put(HOME_MATCH_ID, '田中', AttendanceRecord(status=2, guests_main='1'))

        result = invoke(runner, app, 'summary', str(HOME_MATCH_ID))

        assert result.exit_code == 0
        assert 'TOP 合計2名' in result.output
        assert '開場後: 1名 (田中 (+1))' in result.output
        assert '未回答: 2名 (佐藤, 鈴木)' in result.output
        assert '回答期限: 2/28(金) 20:00' in result.output

    def test_summary_unknown_match(self, runner, app):
        result = invoke(runner, app, 'summary', '4242')
        assert result.exit_code == 1

    def test_rankings(self, runner, app):
        app.snapshot.attendance.put(HOME_MATCH_ID, '田中', AttendanceRecord(status=1))
        app.snapshot.attendance.put(AWAY_RESERVED_MATCH_ID, '田中', AttendanceRecord(status=1))
        app.snapshot.attendance.put(HOME_MATCH_ID, '佐藤', AttendanceRecord(status=1))

        result = invoke(runner, app, 'rankings', '--year', '2025', '--kind', 'attendance',
                        '--format', 'json')

        assert json.loads(result.output) == [
            {'rank': 1, 'name': '田中', 'count': 2},
            {'rank': 2, 'name': '佐藤', 'count': 1},
        ]

    def test_attend(self, runner, app, client):
        result = invoke(runner, app, 'attend', str(HOME_MATCH_ID), '--member', '田中',
                        '--present', '--status', '2', '--guests', '1')

        assert result.exit_code == 0
        assert '田中: 開場後 (+1)' in result.output
        assert [action for action, _ in client.sent] == ['update_attendance'] * 3

    def test_attend_absent(self, runner, app):
        result = invoke(runner, app, 'attend', str(HOME_MATCH_ID), '--member', '佐藤', '--absent')

        assert '佐藤: 欠席 (+0)' in result.output

    def test_attend_without_user(self, runner, app):
        result = invoke(runner, app, 'attend', str(HOME_MATCH_ID), '--present')

        assert result.exit_code == 1
        assert NO_USER in result.output

    def test_attend_invalid_status(self, runner, app):
        result = invoke(runner, app, 'attend', str(HOME_MATCH_ID), '--member', '田中',
                        '--status', '7')

        assert result.exit_code == 1
        assert 'Error:' in result.output


# ============================================================================
# Admin
# ============================================================================

class TestAdminCommands:
    """Tests for the admin group."""

    def test_wrong_password(self, runner, app, client):
        result = invoke(runner, app, 'admin', '--password', 'wrong', 'member', 'add', '高橋')

        assert result.exit_code == 1
        assert client.sent == []

    def test_add_member(self, runner, app, client):
        result = invoke(runner, app, 'admin', '--password', 'secret',
                        'member', 'add', '高橋', '--section', '2')

        assert result.exit_code == 0
        assert client.sent == [('add_member', {'name': '高橋', 'section': 2})]

    def test_password_prompt(self, runner, app):
        result = runner.invoke(cli, ['admin', 'member', 'add', '高橋'],
                               obj={'app': app}, input='secret\n')

        assert result.exit_code == 0
        assert app.snapshot.find_member('高橋') is not None

    def test_delete_member_needs_confirmation(self, runner, app):
        result = invoke(runner, app, 'admin', '--password', 'secret',
                        'member', 'delete', '田中', '--yes')

        assert result.exit_code == 0
        assert app.snapshot.find_member('田中') is None

    def test_add_match(self, runner, app, client):
        result = invoke(runner, app, 'admin', '--password', 'secret', 'match', 'add',
                        '--date', '2025-06-01', '--opponent', '名古屋', '--location', 'away',
                        '--seat-type', 'free', '--queue', '--queue-time', '2025-06-01T06:00')

        assert result.exit_code == 0
        action, payload = client.sent[-1]
        assert action == 'add_match'
        assert payload['queueFlag'] is True
        assert payload['seatType'] == 'free'

    def test_edit_match(self, runner, app):
        result = invoke(runner, app, 'admin', '--password', 'secret', 'match', 'edit',
                        str(HOME_MATCH_ID), '--opponent', '浦和レッズ')

        assert result.exit_code == 0
        assert app.snapshot.find_match(HOME_MATCH_ID).opponent == '浦和レッズ'

    def test_janken_confirm_non_candidate(self, runner, app):
        result = invoke(runner, app, 'admin', '--password', 'secret', 'janken', 'confirm',
                        str(HOME_MATCH_ID), '田中')

        assert result.exit_code == 1

    def test_janken_auto(self, runner, app):
        app.snapshot.attendance.put(HOME_MATCH_ID, '鈴木',
                                    AttendanceRecord(status=1, janken_participate=True))

        result = invoke(runner, app, 'admin', '--password', 'secret', 'janken', 'auto',
                        str(HOME_MATCH_ID))

        assert 'Selected: 鈴木' in result.output

    def test_league_add(self, runner, app):
        result = invoke(runner, app, 'admin', '--password', 'secret', 'league', 'add',
                        '2026 J1', '2026-02', '2026-12')

        assert result.exit_code == 0
        assert len(app.snapshot.leagues) == 2

    def test_set_limit(self, runner, app):
        result = invoke(runner, app, 'admin', '--password', 'secret', 'set-limit', '5')

        assert result.exit_code == 0
        assert app.snapshot.match_limit == 5

    def test_change_password(self, runner, app, client):
        result = runner.invoke(cli, ['admin', '--password', 'secret', 'password'],
                               obj={'app': app}, input='newpass\nnewpass\n')

        assert result.exit_code == 0
        assert client.admin_password == 'newpass'
