"""
Tests for the snapshot records and wire codec.
"""
import json
import logging

from reysol_attendance.config import DEFAULT_MATCH_LIMIT
from reysol_attendance.snapshot import (
    AttendanceBook,
    AttendanceRecord,
    Match,
    Section,
    Snapshot,
    Status,
    parse_count,
)


# ============================================================================
# Status and section coercion
# ============================================================================

class TestCoercion:
    """Tests for loose values coming from the spreadsheet."""

    def test_blank_status_is_none(self):
        assert Status.coerce('') is None
        assert Status.coerce(None) is None
        assert Status.coerce('   ') is None

    def test_numeric_string_status(self):
        assert Status.coerce('3') is Status.AFTER_KICKOFF
        assert Status.coerce(5) is Status.ABSENT

    def test_unknown_status_is_none(self):
        assert Status.coerce(9) is None
        assert Status.coerce('abc') is None

    def test_outside_label_depends_on_venue(self):
        assert Status.OUTSIDE.label() == '柏熱以外'
        assert Status.OUTSIDE.label(away=True) == 'ゴール裏以外'

    def test_missing_section_defaults_to_main(self):
        assert Section.coerce(None) is Section.MAIN
        assert Section.coerce('2') is Section.BACK
        assert Section.BACK.label == 'FRONT'

    def test_parse_count_takes_leading_digits(self):
        assert parse_count('2') == 2
        assert parse_count('3人') == 3
        assert parse_count('') == 0
        assert parse_count('abc') == 0
        assert parse_count(None) == 0


# ============================================================================
# Records
# ============================================================================

class TestAttendanceRecord:
    """Tests for attendance record sanitizing."""

    def test_missing_fields_take_defaults(self):
        record = AttendanceRecord.from_dict({'status': 1})

        assert record == AttendanceRecord(status=1)
        assert record.guests_main == ''
        assert record.big_flag is False

    def test_empty_status_string_becomes_none(self):
        record = AttendanceRecord.from_dict({'status': '', 'guestsMain': 2})

        assert record.status is None
        assert record.guests_main == '2'
        assert record.guest_count == 2


class TestMatch:
    """Tests for the match wire format."""

    def test_unknown_fields_survive_round_trip(self):
        data = {'id': '1001', 'date': '2025-03-01', 'opponent': '浦和',
                'location': 'home', 'memo': 'bus trip'}

        match = Match.from_dict(data)

        assert match.id == 1001
        assert match.to_dict()['memo'] == 'bus trip'
        assert 'leagueId' not in match.to_dict()

    def test_janken_confirmed_names_are_trimmed(self):
        match = Match(id=1, date='2025-03-01', opponent='浦和', janken_confirmed='田中, 佐藤,')

        assert match.janken_confirmed_names() == ['田中', '佐藤']

    def test_seat_type_properties(self):
        match = Match(id=1, date='2025-03-01', opponent='鹿島', location='away', seat_type='free')

        assert match.is_away_free
        assert not match.is_away_reserved


# ============================================================================
# Attendance book
# ============================================================================

class TestAttendanceBook:
    """Tests for the composite-key attendance mapping."""

    def test_key_splits_on_first_underscore(self):
        book = AttendanceBook.from_wire({'1001_山田_太郎': {'status': 1}})

        assert book.get(1001, '山田_太郎').status == 1
        assert list(book.to_wire()) == ['1001_山田_太郎']

    def test_malformed_keys_are_skipped(self, caplog):
        with caplog.at_level(logging.WARNING):
            book = AttendanceBook.from_wire({
                'nounderscore': {'status': 1},
                'abc_田中': {'status': 1},
                '1001_田中': {'status': 2},
            })

        assert len(book) == 1
        assert 'malformed' in caplog.text

    def test_remove_member_only_touches_that_member(self):
        book = AttendanceBook.from_wire({
            '1001_田中': {'status': 1},
            '1002_田中': {'status': 2},
            '1001_佐藤': {'status': 3},
        })

        assert book.remove_member('田中') == 2
        assert len(book) == 1
        assert book.get(1001, '佐藤').status == 3

    def test_rename_member_moves_records(self):
        book = AttendanceBook.from_wire({'1001_田中': {'status': 1}})

        assert book.rename_member('田中', '田中一郎') == 1
        assert book.get(1001, '田中') is None
        assert book.get(1001, '田中一郎').status == 1


# ============================================================================
# Snapshot
# ============================================================================

class TestSnapshotFromRemote:
    """Tests for decoding the endpoint's GET response."""

    def test_leagues_setting_is_a_json_string(self):
        leagues = [{'id': 7, 'name': '2025 J1', 'start': '2025-02', 'end': '2025-12'}]
        data = {'members': [], 'matches': [], 'attendance': {},
                'settings': {'matchLimit': '5', 'leagues': json.dumps(leagues)}}

        snapshot = Snapshot.from_remote_dict(data)

        assert snapshot.match_limit == 5
        assert snapshot.leagues[0].id == '7'
        assert snapshot.find_league(7).name == '2025 J1'

    def test_broken_leagues_setting_yields_no_leagues(self, snapshot, caplog):
        data = {'settings': {'leagues': '[{broken'}}

        with caplog.at_level(logging.ERROR):
            fresh = Snapshot.from_remote_dict(data, previous=snapshot)

        assert fresh.leagues == []
        assert 'leagues' in caplog.text

    def test_leagues_setting_that_is_not_a_list(self, snapshot, caplog):
        with caplog.at_level(logging.WARNING):
            fresh = Snapshot.from_remote_dict({'settings': {'leagues': '5'}}, previous=snapshot)

        assert fresh.leagues == []
        assert 'expected a list' in caplog.text

    def test_wrong_shape_parts_take_defaults(self, caplog):
        data = {'members': {'name': '田中'}, 'attendance': [1, 2], 'settings': 'x'}

        with caplog.at_level(logging.WARNING):
            fresh = Snapshot.from_remote_dict(data)

        assert fresh.members == []
        assert len(fresh.attendance) == 0
        assert fresh.match_limit == DEFAULT_MATCH_LIMIT
        assert 'settings' in caplog.text

    def test_local_blob_with_non_object_items(self):
        fresh = Snapshot.from_local_dict({'members': [5, {'name': '佐藤'}], 'leagues': [None]})

        assert [m.name for m in fresh.members] == ['佐藤']
        assert fresh.leagues == []

    def test_missing_settings_keep_previous_values(self, snapshot):
        snapshot.match_limit = 4

        fresh = Snapshot.from_remote_dict({'members': [{'name': '田中'}]}, previous=snapshot)

        assert fresh.match_limit == 4
        assert fresh.leagues == snapshot.leagues
        assert fresh.members[0].section is Section.MAIN

    def test_local_blob_round_trip(self, snapshot):
        snapshot.attendance.put(1001, '田中', AttendanceRecord(status=2, guests_main='1'))

        blob = snapshot.to_local_dict(timestamp=1700000000000)

        assert blob['timestamp'] == 1700000000000
        assert Snapshot.from_local_dict(blob) == snapshot
