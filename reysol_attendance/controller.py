#!/usr/bin/env python3
"""
Application controller: startup sequencing and the optimistic mutation
pipeline.

Every mutation updates the in-memory snapshot, writes it to the local
store, notifies change listeners and only then informs the remote
endpoint. A failed send is reported but never rolled back; the next
successful fetch is authoritative.
"""
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional
import json
import logging
import time

from .aggregation import (
    effective_status,
    is_attending,
    janken_candidates,
    select_janken_candidate,
    sub_status_choices,
)
from .api import Notifier, RemoteSyncClient
from .config import MIN_ADMIN_PASSWORD_LENGTH
from .errors import SyncError, ValidationError
from .snapshot import (
    AWAY,
    HOME,
    SEAT_FREE,
    SEAT_RESERVED,
    AttendanceRecord,
    League,
    Match,
    Member,
    Section,
    Snapshot,
    Status,
)
from .store import LocalSnapshotStore


logger = logging.getLogger(__name__)

Listener = Callable[[Snapshot], None]

MATCH_FIELDS = (
    'date', 'opponent', 'location', 'seat_type', 'deadline', 'queue_flag',
    'queue_time', 'line_org_flag', 'line_org_time', 'away_notice', 'league_id',
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_match(match: Match) -> Match:
    """
    Drop settings that do not apply to the match's location and seating.

    Home matches carry no seat type or deadline. Queue and line-organization
    settings only exist for away matches with free seating, and their times
    only while the flag is set.
    """
    if not match.is_away:
        match = replace(match, seat_type='', deadline='')
    if not match.is_away_free:
        return replace(match, queue_flag=False, queue_time='',
                       line_org_flag=False, line_org_time='')
    if not match.queue_flag:
        match = replace(match, queue_time='')
    if not match.line_org_flag:
        match = replace(match, line_org_time='')
    return match


def _validate_match(match: Match) -> None:
    if not match.date.strip() or not match.opponent.strip():
        raise ValidationError('日付と対戦相手を入力してください。')
    if match.location not in (HOME, AWAY):
        raise ValidationError(f"Unknown location: {match.location}")
    if match.is_away and match.seat_type not in ('', SEAT_FREE, SEAT_RESERVED):
        raise ValidationError(f"Unknown seat type: {match.seat_type}")


class AttendanceApp:
    """
    Holds the current snapshot and applies user actions to it.

    Attributes
    ----------
    snapshot : Snapshot
        Current state
    ready : bool
        True once any snapshot (local or remote) has been loaded
    current_user : str
        Last selected member name, or an empty string
    """

    def __init__(self, store: LocalSnapshotStore, client: RemoteSyncClient,
                 notifier: Optional[Notifier] = None, rng: Optional[Any] = None,
                 max_workers: int = 0) -> None:
        """
        Initialize the controller.

        Parameters
        ----------
        store : LocalSnapshotStore
            Local snapshot store
        client : RemoteSyncClient
            Remote endpoint client
        notifier : Optional[Callable[[str], None]]
            Receives user-facing messages
        rng : Optional[Any]
            Random source for janken tie-breaks (default: ``random``)
        max_workers : int
            If positive, mutations are sent from a thread pool of this size
            instead of inline (default: 0)
        """
        self.store = store
        self.client = client
        self.notifier = notifier
        self.rng = rng
        self.snapshot = Snapshot()
        self.ready = False
        self.current_user = ''
        self._listeners: List[Listener] = []
        self._executor = ThreadPoolExecutor(max_workers=max_workers) if max_workers > 0 else None
        self._pending: List[Future] = []

    # -- listeners and notification ------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self.snapshot)

    def notify(self, message: str) -> None:
        if self.notifier is not None:
            self.notifier(message)

    # -- startup -------------------------------------------------------

    def start(self, fetch: bool = True) -> bool:
        """
        Load local state, render it, then fetch fresh state.

        Parameters
        ----------
        fetch : bool
            Whether to contact the remote endpoint (default: True)

        Returns
        -------
        bool
            True if a snapshot is available afterwards
        """
        local = self.store.load()
        self.current_user = self.store.load_current_user()
        if local is not None:
            self.snapshot = local
            self.ready = True
            self._changed()
        if fetch:
            return self.refresh()
        return self.ready

    def refresh(self, strict: bool = False) -> bool:
        """
        Replace the snapshot with a fresh one from the endpoint.

        Failures are only shown to the user when nothing was loaded yet.

        Parameters
        ----------
        strict : bool
            Re-raise fetch failures instead of falling back to the local
            snapshot (default: False)

        Returns
        -------
        bool
            True if a snapshot is available afterwards
        """
        try:
            fresh = self.client.fetch_snapshot(previous=self.snapshot if self.ready else None)
        except SyncError as e:
            logger.error("Error loading data: %s", e)
            if strict:
                raise
            if not self.ready:
                self.notify(f"データの読み込みに失敗しました: {e}")
            return self.ready

        self.snapshot = fresh
        self.ready = True
        self.store.save(self.snapshot)
        self._changed()
        return True

    # -- pipeline ------------------------------------------------------

    def _commit(self, action: str, payload: Dict[str, Any]) -> None:
        self.store.save(self.snapshot)
        self._changed()
        if self._executor is None:
            self.client.send_mutation(action, payload)
        else:
            self._pending.append(self._executor.submit(self.client.send_mutation, action, payload))

    def wait(self) -> List[bool]:
        """
        Wait for mutations sent from the thread pool.

        Returns
        -------
        List[bool]
            Outcome of each finished send, in completion order
        """
        pending, self._pending = self._pending, []
        return [future.result() for future in as_completed(pending)]

    def close(self) -> None:
        self.wait()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self.client.close()

    # -- lookups -------------------------------------------------------

    def _member(self, name: str) -> Member:
        member = self.snapshot.find_member(name)
        if member is None:
            raise ValidationError(f"メンバーが見つかりません: {name}")
        return member

    def _match(self, match_id: Any) -> Match:
        match = self.snapshot.find_match(match_id)
        if match is None:
            raise ValidationError(f"試合が見つかりません: {match_id}")
        return match

    def _league(self, league_id: Any) -> League:
        league = self.snapshot.find_league(league_id)
        if league is None:
            raise ValidationError(f"リーグが見つかりません: {league_id}")
        return league

    # -- current user --------------------------------------------------

    def select_user(self, name: str) -> None:
        """Remember the selected member; an empty name clears the selection."""
        if name:
            self._member(name)
        self.current_user = name
        self.store.save_current_user(name)
        self._changed()

    # -- members -------------------------------------------------------

    def add_member(self, name: str, section: Any = Section.MAIN) -> Member:
        name = (name or '').strip()
        if not name:
            raise ValidationError('名前を入力してください。')
        if self.snapshot.find_member(name) is not None:
            raise ValidationError('既に登録されているメンバーです。')

        member = Member(name=name, section=Section.coerce(section))
        self.snapshot.members.append(member)
        self._commit('add_member', member.to_dict())
        return member

    def update_member(self, original_name: str, name: str, section: Any) -> Member:
        """
        Rename a member and/or change their section.

        A rename moves every attendance record and the current selection to
        the new name.
        """
        member = self._member(original_name)
        name = (name or '').strip()
        if not name:
            raise ValidationError('名前を入力してください。')
        if name != original_name and self.snapshot.find_member(name) is not None:
            raise ValidationError('既に登録されているメンバーです。')

        member.name = name
        member.section = Section.coerce(section)
        if name != original_name:
            moved = self.snapshot.attendance.rename_member(original_name, name)
            logger.debug("Moved %d attendance records from %s to %s", moved, original_name, name)
            if self.current_user == original_name:
                self.current_user = name
                self.store.save_current_user(name)

        self._commit('update_member', {
            'originalName': original_name,
            'name': name,
            'section': int(member.section),
        })
        return member

    def delete_member(self, name: str) -> None:
        member = self._member(name)
        self.snapshot.members.remove(member)
        removed = self.snapshot.attendance.remove_member(name)
        logger.debug("Removed %d attendance records of %s", removed, name)
        if self.current_user == name:
            self.current_user = ''
            self.store.save_current_user('')
        self._commit('delete_member', {'name': name})

    # -- matches -------------------------------------------------------

    def add_match(self, date: str, opponent: str, location: str = HOME,
                  **fields: Any) -> Match:
        """
        Create a match. The id is the creation time in milliseconds.

        Parameters
        ----------
        date : str
            Match date (YYYY-MM-DD)
        opponent : str
            Opponent name
        location : str
            "home" or "away"
        **fields
            Any other field of ``MATCH_FIELDS``

        Returns
        -------
        Match
            Created match
        """
        unknown = set(fields) - set(MATCH_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown match fields: {', '.join(sorted(unknown))}")

        match_id = _now_ms()
        while self.snapshot.find_match(match_id) is not None:
            match_id += 1
        match = normalize_match(Match(id=match_id, date=(date or '').strip(),
                                      opponent=(opponent or '').strip(),
                                      location=location, **fields))
        _validate_match(match)

        self.snapshot.matches.append(match)
        self._commit('add_match', match.to_dict())
        return match

    def update_match(self, match_id: Any, **changes: Any) -> Match:
        """Change fields of an existing match; the janken confirmation is kept."""
        current = self._match(match_id)
        unknown = set(changes) - set(MATCH_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown match fields: {', '.join(sorted(unknown))}")

        updated = normalize_match(replace(current, **changes))
        _validate_match(updated)

        index = self.snapshot.matches.index(current)
        self.snapshot.matches[index] = updated
        self._commit('update_match', updated.to_dict())
        return updated

    def delete_match(self, match_id: Any) -> None:
        match = self._match(match_id)
        self.snapshot.matches.remove(match)
        removed = self.snapshot.attendance.remove_match(match.id)
        logger.debug("Removed %d attendance records of match %s", removed, match.id)
        self._commit('delete_match', {'id': match.id})

    # -- leagues and settings ------------------------------------------

    def _sync_leagues(self) -> None:
        value = json.dumps([lg.to_dict() for lg in self.snapshot.leagues], ensure_ascii=False)
        self._commit('update_setting', {'key': 'leagues', 'value': value})

    @staticmethod
    def _league_fields(name: str, start: str, end: str) -> Dict[str, str]:
        name, start, end = (name or '').strip(), (start or '').strip(), (end or '').strip()
        if not name or not start or not end:
            raise ValidationError('全ての項目を入力してください。')
        return {'name': name, 'start': start[:7], 'end': end[:7]}

    def add_league(self, name: str, start: str, end: str) -> League:
        league = League(id=str(_now_ms()), **self._league_fields(name, start, end))
        while self.snapshot.find_league(league.id) is not None:
            league.id = str(int(league.id) + 1)
        self.snapshot.leagues.append(league)
        self._sync_leagues()
        return league

    def update_league(self, league_id: Any, name: Optional[str] = None,
                      start: Optional[str] = None, end: Optional[str] = None) -> League:
        league = self._league(league_id)
        fields = self._league_fields(
            league.name if name is None else name,
            league.start if start is None else start,
            league.end if end is None else end,
        )
        league.name, league.start, league.end = fields['name'], fields['start'], fields['end']
        self._sync_leagues()
        return league

    def delete_league(self, league_id: Any) -> None:
        league = self._league(league_id)
        self.snapshot.leagues.remove(league)
        self._sync_leagues()

    def set_match_limit(self, limit: Any) -> None:
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid match limit: {limit}") from None
        if limit <= 0:
            raise ValidationError('表示件数は1以上にしてください。')
        self.snapshot.match_limit = limit
        self._commit('update_setting', {'key': 'matchLimit', 'value': limit})

    # -- attendance ----------------------------------------------------

    def _edit_record(self, match_id: Any, member_name: str,
                     edit: Callable[[Match, Member, AttendanceRecord], None]) -> AttendanceRecord:
        match = self._match(match_id)
        member = self._member(member_name)
        current = self.snapshot.attendance.get(match.id, member.name)
        record = replace(current) if current is not None else AttendanceRecord()
        edit(match, member, record)
        self.snapshot.attendance.put(match.id, member.name, record)
        payload = {'matchId': str(match.id), 'memberName': member.name}
        payload.update(record.to_dict())
        self._commit('update_attendance', payload)
        return record

    @staticmethod
    def _require_attending(match: Match, record: AttendanceRecord) -> None:
        if not is_attending(effective_status(match, record)):
            raise ValidationError('出席にしてから入力してください。')

    def set_presence(self, match_id: Any, member_name: str, attending: bool) -> AttendanceRecord:
        """
        Mark a member present or absent.

        Absence clears guests and the big flag. Coming back from absence (or
        from no answer) starts at status 1 on away matches with reserved
        seats and at PENDING otherwise; a picked sub-status is kept.
        """
        def edit(match: Match, member: Member, record: AttendanceRecord) -> None:
            if not attending:
                record.status = int(Status.ABSENT)
                record.guests_main = ''
                record.guests_back = ''
                record.big_flag = False
            elif not record.status or record.status == Status.ABSENT:
                first = Status.BEFORE_OPEN if match.is_away_reserved else Status.PENDING
                record.status = int(first)

        return self._edit_record(match_id, member_name, edit)

    def set_sub_status(self, match_id: Any, member_name: str, status: Any) -> AttendanceRecord:
        def edit(match: Match, member: Member, record: AttendanceRecord) -> None:
            self._require_attending(match, record)
            code = Status.coerce(status)
            if code not in sub_status_choices(match):
                raise ValidationError(f"この試合では選択できないステータスです: {status}")
            record.status = int(code)

        return self._edit_record(match_id, member_name, edit)

    def set_guests(self, match_id: Any, member_name: str, count: Any) -> AttendanceRecord:
        """
        Set the guest count of a member.

        Guests go to the bucket of the member's own section; the other bucket
        is cleared. Zero is stored as an empty string.
        """
        try:
            count = int(count or 0)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid guest count: {count}") from None
        if count < 0:
            raise ValidationError(f"Invalid guest count: {count}")
        value = str(count) if count else ''

        def edit(match: Match, member: Member, record: AttendanceRecord) -> None:
            self._require_attending(match, record)
            if member.section is Section.BACK:
                record.guests_back = value
                record.guests_main = ''
            else:
                record.guests_main = value
                record.guests_back = ''

        return self._edit_record(match_id, member_name, edit)

    def _set_flag(self, match_id: Any, member_name: str, attr: str, value: bool) -> AttendanceRecord:
        def edit(match: Match, member: Member, record: AttendanceRecord) -> None:
            if attr == 'big_flag' and value:
                self._require_attending(match, record)
            setattr(record, attr, bool(value))

        return self._edit_record(match_id, member_name, edit)

    def set_big_flag(self, match_id: Any, member_name: str, value: bool) -> AttendanceRecord:
        return self._set_flag(match_id, member_name, 'big_flag', value)

    def set_janken_participate(self, match_id: Any, member_name: str, value: bool) -> AttendanceRecord:
        return self._set_flag(match_id, member_name, 'janken_participate', value)

    def set_morning_withdraw(self, match_id: Any, member_name: str, value: bool) -> AttendanceRecord:
        return self._set_flag(match_id, member_name, 'morning_withdraw', value)

    # -- janken --------------------------------------------------------

    def _set_janken_confirmed(self, match: Match, value: str) -> None:
        match.janken_confirmed = value
        self._commit('update_match', {'id': match.id, 'jankenConfirmed': value})

    def auto_select_janken(self, match_id: Any) -> str:
        """
        Pick and confirm the janken entrant with the fewest league wins.

        Raises
        ------
        JankenSelectionError
            If no entrant can be picked
        """
        winner = select_janken_candidate(self.snapshot, match_id, rng=self.rng)
        match = self._match(match_id)
        self._set_janken_confirmed(match, winner)
        logger.info("Janken entrant for match %s: %s", match.id, winner)
        return winner

    def confirm_janken(self, match_id: Any, member_name: str) -> None:
        """Confirm one opted-in member, replacing any earlier confirmation."""
        match = self._match(match_id)
        if member_name not in janken_candidates(self.snapshot, match):
            raise ValidationError(f"{member_name} はじゃんけん参加希望者ではありません。")
        self._set_janken_confirmed(match, member_name)

    def remove_janken_confirmed(self, match_id: Any, member_name: str) -> None:
        match = self._match(match_id)
        remaining = [n for n in match.janken_confirmed_names() if n != member_name]
        self._set_janken_confirmed(match, ', '.join(remaining))

    # -- admin ---------------------------------------------------------

    def verify_admin(self, password: str) -> bool:
        return self.client.verify_admin(password)

    def change_admin_password(self, old_password: str, new_password: str) -> None:
        """
        Change the admin password on the endpoint.

        Raises
        ------
        ValidationError
            If a value is missing or the new password is too short
        RemoteError
            If the endpoint rejects the change
        """
        if not old_password or not new_password:
            raise ValidationError('現在のパスワードと新しいパスワードを入力してください。')
        if len(new_password) < MIN_ADMIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"パスワードは{MIN_ADMIN_PASSWORD_LENGTH}文字以上にしてください。"
            )
        self.client.update_admin_password(old_password, new_password)
