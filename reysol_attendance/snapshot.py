#!/usr/bin/env python3
"""
Records and wire codec for the attendance snapshot.

The remote endpoint and local storage both exchange one JSON document
holding members, matches, attendance and league settings. Attendance rows
travel under composite ``"{matchId}_{memberName}"`` keys; in memory they are
kept in an :class:`AttendanceBook` keyed by match id, then member name.
"""
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Iterator, List, Optional, Tuple
import json
import logging
import re

from .config import DEFAULT_MATCH_LIMIT


logger = logging.getLogger(__name__)

HOME = 'home'
AWAY = 'away'
SEAT_FREE = 'free'
SEAT_RESERVED = 'reserved'

_LEADING_INT = re.compile(r'^\s*([+-]?\d+)')


class Section(IntEnum):
    """Seating group a member belongs to."""
    MAIN = 1
    BACK = 2

    @property
    def label(self) -> str:
        return 'FRONT' if self is Section.BACK else 'TOP'

    @classmethod
    def coerce(cls, value: Any) -> 'Section':
        """Map a stored section value to a Section, defaulting to MAIN."""
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return cls.MAIN


class Status(IntEnum):
    """
    Attendance status codes as stored by the spreadsheet.

    PENDING means the member is attending but has not picked a sub-status
    yet. QUEUE_START and LINE_ORGANIZATION only apply to away matches with
    free seating where the match has the matching flag set.
    """
    PENDING = 0
    BEFORE_OPEN = 1
    AFTER_OPEN = 2
    AFTER_KICKOFF = 3
    OUTSIDE = 4
    ABSENT = 5
    QUEUE_START = 6
    LINE_ORGANIZATION = 7

    def label(self, away: bool = False) -> str:
        if away and self is Status.OUTSIDE:
            return 'ゴール裏以外'
        return STATUS_LABELS[self]

    @classmethod
    def coerce(cls, value: Any) -> Optional['Status']:
        """Map a stored status value to a Status; blanks and junk become None."""
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, str) and not value.strip():
            return None
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return None


STATUS_LABELS = {
    Status.PENDING: '出席',
    Status.BEFORE_OPEN: '開場まで',
    Status.AFTER_OPEN: '開場後',
    Status.AFTER_KICKOFF: 'キックオフ後',
    Status.OUTSIDE: '柏熱以外',
    Status.ABSENT: '欠席',
    Status.QUEUE_START: '並び開始',
    Status.LINE_ORGANIZATION: '列整理',
}

# Sub-status choices shown to every attending member
BASE_SUB_STATUSES = (
    Status.BEFORE_OPEN,
    Status.AFTER_OPEN,
    Status.AFTER_KICKOFF,
    Status.OUTSIDE,
)


def parse_count(value: Any) -> int:
    """
    Parse a guest count the way the spreadsheet front end always has.

    Leading integer digits win; anything unparsable counts as zero.

    Parameters
    ----------
    value : Any
        Stored count ("", "2", 2, None, ...)

    Returns
    -------
    int
        Parsed count
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else 0


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'on')
    return bool(value)


def _to_text(value: Any) -> str:
    if value is None:
        return ''
    return str(value)


def coerce_match_id(value: Any) -> int:
    """
    Normalize a match id coming from the wire (int or numeric string).

    Raises
    ------
    ValueError
        If the value is not an integer id
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid match id: {value!r}")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return int(str(value).strip())


@dataclass
class Member:
    name: str
    section: Section = Section.MAIN

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'section': int(self.section)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Member':
        return cls(name=str(data['name']), section=Section.coerce(data.get('section')))


@dataclass
class Match:
    """
    A match members can answer for.

    Attributes
    ----------
    id : int
        Creation timestamp in milliseconds, unique per match
    date : str
        Match date as entered (YYYY-MM-DD or an ISO timestamp)
    location : str
        "home" or "away"
    seat_type : str
        "free" or "reserved" for away matches, empty otherwise
    janken_confirmed : str
        Comma-joined names confirmed for the janken draw
    league_id : Optional[str]
        Explicit league assignment; leagues also match by date
    extra : Dict[str, Any]
        Unknown wire fields, kept so they survive a round trip
    """
    id: int
    date: str
    opponent: str
    location: str = HOME
    seat_type: str = ''
    deadline: str = ''
    queue_flag: bool = False
    queue_time: str = ''
    line_org_flag: bool = False
    line_org_time: str = ''
    away_notice: str = ''
    janken_confirmed: str = ''
    league_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _WIRE_FIELDS = {
        'id': 'id',
        'date': 'date',
        'opponent': 'opponent',
        'location': 'location',
        'seatType': 'seat_type',
        'deadline': 'deadline',
        'queueFlag': 'queue_flag',
        'queueTime': 'queue_time',
        'lineOrgFlag': 'line_org_flag',
        'lineOrgTime': 'line_org_time',
        'awayNotice': 'away_notice',
        'jankenConfirmed': 'janken_confirmed',
        'leagueId': 'league_id',
    }

    @property
    def is_away(self) -> bool:
        return self.location == AWAY

    @property
    def is_away_free(self) -> bool:
        return self.is_away and self.seat_type == SEAT_FREE

    @property
    def is_away_reserved(self) -> bool:
        return self.is_away and self.seat_type == SEAT_RESERVED

    def janken_confirmed_names(self) -> List[str]:
        return [name.strip() for name in (self.janken_confirmed or '').split(',') if name.strip()]

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        for wire_name, attr in self._WIRE_FIELDS.items():
            value = getattr(self, attr)
            if attr == 'league_id' and value is None:
                continue
            data[wire_name] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Match':
        extra = {k: v for k, v in data.items() if k not in cls._WIRE_FIELDS}
        league_id = data.get('leagueId')
        return cls(
            id=coerce_match_id(data['id']),
            date=_to_text(data.get('date')),
            opponent=_to_text(data.get('opponent')),
            location=_to_text(data.get('location')) or HOME,
            seat_type=_to_text(data.get('seatType')),
            deadline=_to_text(data.get('deadline')),
            queue_flag=_to_bool(data.get('queueFlag')),
            queue_time=_to_text(data.get('queueTime')),
            line_org_flag=_to_bool(data.get('lineOrgFlag')),
            line_org_time=_to_text(data.get('lineOrgTime')),
            away_notice=_to_text(data.get('awayNotice')),
            janken_confirmed=_to_text(data.get('jankenConfirmed')),
            league_id=str(league_id) if league_id not in (None, '') else None,
            extra=extra,
        )


@dataclass
class League:
    id: str
    name: str
    start: str
    end: str

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'start': self.start, 'end': self.end}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'League':
        return cls(
            id=str(data['id']),
            name=_to_text(data.get('name')),
            start=_to_text(data.get('start')),
            end=_to_text(data.get('end')),
        )


@dataclass
class AttendanceRecord:
    status: Optional[int] = None
    guests_main: str = ''
    guests_back: str = ''
    big_flag: bool = False
    janken_participate: bool = False
    morning_withdraw: bool = False

    @property
    def guest_count(self) -> int:
        return parse_count(self.guests_main) + parse_count(self.guests_back)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'guestsMain': self.guests_main,
            'guestsBack': self.guests_back,
            'bigFlag': self.big_flag,
            'jankenParticipate': self.janken_participate,
            'morningWithdraw': self.morning_withdraw,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttendanceRecord':
        """Build a record, filling every missing field with its default."""
        status = Status.coerce(data.get('status'))
        return cls(
            status=int(status) if status is not None else None,
            guests_main=_to_text(data.get('guestsMain')),
            guests_back=_to_text(data.get('guestsBack')),
            big_flag=_to_bool(data.get('bigFlag', False)),
            janken_participate=_to_bool(data.get('jankenParticipate', False)),
            morning_withdraw=_to_bool(data.get('morningWithdraw', False)),
        )


class AttendanceBook:
    """
    Attendance records keyed by match id, then member name.

    The composite wire key is split on the first underscore so member names
    may contain underscores of their own.
    """

    def __init__(self) -> None:
        self._records: Dict[int, Dict[str, AttendanceRecord]] = {}

    def __len__(self) -> int:
        return sum(len(rows) for rows in self._records.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AttendanceBook):
            return NotImplemented
        return self._records == other._records

    def __repr__(self) -> str:
        return f"AttendanceBook({len(self)} records)"

    def get(self, match_id: int, member_name: str) -> Optional[AttendanceRecord]:
        return self._records.get(match_id, {}).get(member_name)

    def put(self, match_id: int, member_name: str, record: AttendanceRecord) -> None:
        self._records.setdefault(match_id, {})[member_name] = record

    def items(self) -> Iterator[Tuple[int, str, AttendanceRecord]]:
        for match_id, rows in self._records.items():
            for member_name, record in rows.items():
                yield match_id, member_name, record

    def remove_member(self, member_name: str) -> int:
        """Drop every record of a member. Returns the number removed."""
        removed = 0
        for match_id in list(self._records):
            rows = self._records[match_id]
            if rows.pop(member_name, None) is not None:
                removed += 1
            if not rows:
                del self._records[match_id]
        return removed

    def remove_match(self, match_id: int) -> int:
        """Drop every record of a match. Returns the number removed."""
        return len(self._records.pop(match_id, {}))

    def rename_member(self, old_name: str, new_name: str) -> int:
        """Move a member's records to a new name. Returns the number moved."""
        moved = 0
        for rows in self._records.values():
            if old_name in rows:
                rows[new_name] = rows.pop(old_name)
                moved += 1
        return moved

    def to_wire(self) -> Dict[str, Dict[str, Any]]:
        return {
            f"{match_id}_{member_name}": record.to_dict()
            for match_id, member_name, record in self.items()
        }

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> 'AttendanceBook':
        book = cls()
        for key, value in _as_dict(data, "attendance").items():
            match_part, sep, member_name = str(key).partition('_')
            if not sep or not member_name or not isinstance(value, dict):
                logger.warning("Skipping malformed attendance key: %r", key)
                continue
            try:
                match_id = coerce_match_id(match_part)
            except ValueError:
                logger.warning("Skipping attendance key with bad match id: %r", key)
                continue
            book.put(match_id, member_name, AttendanceRecord.from_dict(value))
        return book


def _coerce_limit(value: Any, default: int) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return default
    return limit if limit > 0 else default


def _as_list(raw: Any, part: str) -> List[Any]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning("Ignoring %s: expected a list, got %s", part, type(raw).__name__)
        return []
    return raw


def _as_dict(raw: Any, part: str) -> Dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        logger.warning("Ignoring %s: expected an object, got %s", part, type(raw).__name__)
        return {}
    return raw


def _parse_matches(raw: Any) -> List[Match]:
    matches = []
    for item in _as_list(raw, "matches"):
        try:
            matches.append(Match.from_dict(item))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed match %r: %s", item, e)
    return matches


def _parse_members(raw: Any) -> List[Member]:
    members = []
    for item in _as_list(raw, "members"):
        try:
            members.append(Member.from_dict(item))
        except (AttributeError, KeyError, TypeError) as e:
            logger.warning("Skipping malformed member %r: %s", item, e)
    return members


def _parse_leagues(raw: Any) -> List[League]:
    leagues = []
    for item in _as_list(raw, "leagues"):
        try:
            leagues.append(League.from_dict(item))
        except (AttributeError, KeyError, TypeError) as e:
            logger.warning("Skipping malformed league %r: %s", item, e)
    return leagues


@dataclass
class Snapshot:
    """Full client state: everything the endpoint returns plus settings."""
    members: List[Member] = field(default_factory=list)
    matches: List[Match] = field(default_factory=list)
    attendance: AttendanceBook = field(default_factory=AttendanceBook)
    match_limit: int = DEFAULT_MATCH_LIMIT
    leagues: List[League] = field(default_factory=list)

    def find_member(self, name: str) -> Optional[Member]:
        return next((m for m in self.members if m.name == name), None)

    def find_match(self, match_id: Any) -> Optional[Match]:
        try:
            match_id = coerce_match_id(match_id)
        except ValueError:
            return None
        return next((m for m in self.matches if m.id == match_id), None)

    def find_league(self, league_id: Any) -> Optional[League]:
        return next((lg for lg in self.leagues if lg.id == str(league_id)), None)

    def to_local_dict(self, timestamp: int) -> Dict[str, Any]:
        """Serialize to the local storage blob."""
        return {
            'members': [m.to_dict() for m in self.members],
            'matches': [m.to_dict() for m in self.matches],
            'attendance': self.attendance.to_wire(),
            'matchLimit': self.match_limit,
            'leagues': [lg.to_dict() for lg in self.leagues],
            'timestamp': timestamp,
        }

    @classmethod
    def from_local_dict(cls, data: Dict[str, Any]) -> 'Snapshot':
        """Deserialize the local storage blob; missing parts take defaults."""
        return cls(
            members=_parse_members(data.get('members')),
            matches=_parse_matches(data.get('matches')),
            attendance=AttendanceBook.from_wire(data.get('attendance')),
            match_limit=_coerce_limit(data.get('matchLimit'), DEFAULT_MATCH_LIMIT),
            leagues=_parse_leagues(data.get('leagues')),
        )

    @classmethod
    def from_remote_dict(cls, data: Dict[str, Any],
                         previous: Optional['Snapshot'] = None) -> 'Snapshot':
        """
        Deserialize the endpoint's GET response.

        Settings the endpoint leaves out keep the values of ``previous``.
        The leagues setting is itself a JSON string; if it cannot be parsed
        the snapshot carries no leagues.

        Parameters
        ----------
        data : Dict[str, Any]
            Decoded response body
        previous : Optional[Snapshot]
            Snapshot currently held by the client

        Returns
        -------
        Snapshot
            Fresh snapshot
        """
        settings = _as_dict(data.get('settings'), "settings")
        match_limit = previous.match_limit if previous else DEFAULT_MATCH_LIMIT
        if settings.get('matchLimit'):
            match_limit = _coerce_limit(settings['matchLimit'], match_limit)

        leagues = list(previous.leagues) if previous else []
        raw_leagues = settings.get('leagues')
        if raw_leagues:
            try:
                parsed = json.loads(raw_leagues) if isinstance(raw_leagues, str) else raw_leagues
                leagues = _parse_leagues(parsed)
            except ValueError as e:
                logger.error("Failed to parse leagues settings: %s", e)
                leagues = []

        return cls(
            members=_parse_members(data.get('members')),
            matches=_parse_matches(data.get('matches')),
            attendance=AttendanceBook.from_wire(data.get('attendance')),
            match_limit=match_limit,
            leagues=leagues,
        )
