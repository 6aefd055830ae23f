#!/usr/bin/env python3
"""
Aggregate attendance into per-match summaries and member rankings.

All functions are pure: they read a :class:`Snapshot` and return new
objects. Member order in every name list follows the member list order.
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
import random

from .dates import parse_date
from .errors import JankenSelectionError
from .leagues import league_for_match, match_in_league
from .snapshot import (
    BASE_SUB_STATUSES,
    AttendanceRecord,
    Match,
    Section,
    Snapshot,
    Status,
    parse_count,
)


def effective_status(match: Match, record: Optional[AttendanceRecord]) -> Optional[Status]:
    """
    Status of a record as far as the match configuration allows.

    Queue-start and line-organization answers only count while the match
    still has the corresponding flag; otherwise they read as no answer.

    Parameters
    ----------
    match : Match
        Match the record belongs to
    record : Optional[AttendanceRecord]
        Stored record, if any

    Returns
    -------
    Optional[Status]
        Effective status or None
    """
    if record is None:
        return None
    status = Status.coerce(record.status)
    if status is Status.QUEUE_START and not match.queue_flag:
        return None
    if status is Status.LINE_ORGANIZATION and not match.line_org_flag:
        return None
    return status


def is_attending(status: Optional[Status]) -> bool:
    return status is not None and status is not Status.ABSENT


def sub_status_choices(match: Match) -> List[Status]:
    """Sub-statuses a member may pick for this match."""
    if match.is_away and not match.is_away_free:
        return []
    choices = list(BASE_SUB_STATUSES)
    if match.is_away_free:
        if match.line_org_flag:
            choices.insert(0, Status.LINE_ORGANIZATION)
        if match.queue_flag:
            choices.insert(0, Status.QUEUE_START)
    return choices


def display_order(match: Match) -> List[Status]:
    """Order in which status groups are listed in a match summary."""
    if not match.is_away:
        return list(BASE_SUB_STATUSES) + [Status.QUEUE_START, Status.LINE_ORGANIZATION]
    if match.is_away_free:
        return sub_status_choices(match)
    return []


def display_name(name: str, record: AttendanceRecord) -> str:
    guests = record.guest_count
    return f"{name} (+{guests})" if guests > 0 else name


@dataclass
class SectionTotals:
    member_main: int = 0
    member_back: int = 0
    guests_main: int = 0
    guests_back: int = 0
    outside: int = 0

    @property
    def main_total(self) -> int:
        return self.member_main + self.guests_main

    @property
    def back_total(self) -> int:
        return self.member_back + self.guests_back

    @property
    def grand_total(self) -> int:
        return self.main_total + self.back_total


@dataclass
class SpecialFlagGroups:
    big_flag: List[str] = field(default_factory=list)
    janken_participate: List[str] = field(default_factory=list)
    morning_withdraw: List[str] = field(default_factory=list)


@dataclass
class MatchSummary:
    """
    Everything the summary panel of a match shows.

    Attributes
    ----------
    match : Match
        Summarized match
    status_groups : Dict[Status, List[str]]
        Display names per effective status (PENDING is never grouped)
    section_totals : SectionTotals
        Head counts per seating section, plus the outside counter
    special_flag_groups : SpecialFlagGroups
        Members with the big-flag, janken or morning-withdraw flags set
    unanswered : List[str]
        Members without an effective status
    janken_confirmed : List[str]
        Names confirmed for the janken draw
    attendees : List[str]
        Display names of every attending member with a picked status
    """
    match: Match
    status_groups: Dict[Status, List[str]]
    section_totals: SectionTotals
    special_flag_groups: SpecialFlagGroups
    unanswered: List[str]
    janken_confirmed: List[str]
    attendees: List[str]


def compute_match_summary(snapshot: Snapshot, match_id: Any) -> Optional[MatchSummary]:
    """
    Summarize one match in a single pass over the member list.

    Parameters
    ----------
    snapshot : Snapshot
        Current state
    match_id : Any
        Match id

    Returns
    -------
    Optional[MatchSummary]
        Summary, or None if the match does not exist
    """
    match = snapshot.find_match(match_id)
    if match is None:
        return None

    groups: Dict[Status, List[str]] = OrderedDict(
        (status, []) for status in Status if status is not Status.PENDING
    )
    totals = SectionTotals()
    flags = SpecialFlagGroups()
    unanswered: List[str] = []
    attendees: List[str] = []

    for member in snapshot.members:
        record = snapshot.attendance.get(match.id, member.name)

        if record is not None:
            if record.big_flag:
                flags.big_flag.append(member.name)
            if record.janken_participate:
                flags.janken_participate.append(member.name)
            if record.morning_withdraw:
                flags.morning_withdraw.append(member.name)

        status = effective_status(match, record)
        if status is None:
            unanswered.append(member.name)
            continue

        name = display_name(member.name, record)
        if status is not Status.PENDING:
            groups[status].append(name)
            if status is not Status.ABSENT:
                attendees.append(name)

        if status is Status.OUTSIDE:
            totals.outside += 1 + record.guest_count
        elif status is not Status.ABSENT:
            if member.section is Section.BACK:
                totals.member_back += 1
            else:
                totals.member_main += 1
            totals.guests_main += parse_count(record.guests_main)
            totals.guests_back += parse_count(record.guests_back)

    return MatchSummary(
        match=match,
        status_groups=groups,
        section_totals=totals,
        special_flag_groups=flags,
        unanswered=unanswered,
        janken_confirmed=match.janken_confirmed_names(),
        attendees=attendees,
    )


@dataclass
class RankingEntry:
    rank: int
    name: str
    count: int


def compute_ranking(counts: Union[Mapping[str, int], Iterable[Tuple[str, int]]]) -> List[RankingEntry]:
    """
    Rank names by count using standard competition ranking.

    Tied counts share the rank of the first entry in their block and the
    next lower count resumes at its 1-based position, so 5, 5, 3 ranks as
    1, 1, 3. Ties keep their input order.

    Parameters
    ----------
    counts : Mapping[str, int] or iterable of (name, count)
        Counts per name

    Returns
    -------
    List[RankingEntry]
        Entries ordered by count, highest first
    """
    items = list(counts.items()) if isinstance(counts, Mapping) else list(counts)
    ordered = sorted(items, key=lambda item: item[1], reverse=True)

    ranking: List[RankingEntry] = []
    current_rank = 1
    previous: Optional[int] = None
    for position, (name, count) in enumerate(ordered, start=1):
        if previous is not None and count < previous:
            current_rank = position
        previous = count
        ranking.append(RankingEntry(rank=current_rank, name=name, count=count))
    return ranking


def janken_win_counts(matches: Iterable[Match]) -> Dict[str, int]:
    """How often each name was confirmed for the janken draw."""
    counts: Dict[str, int] = {}
    for match in matches:
        for name in match.janken_confirmed_names():
            counts[name] = counts.get(name, 0) + 1
    return counts


def janken_candidates(snapshot: Snapshot, match: Match) -> List[str]:
    """Members who opted in to the janken draw for a match."""
    names = []
    for member in snapshot.members:
        record = snapshot.attendance.get(match.id, member.name)
        if record is not None and record.janken_participate:
            names.append(member.name)
    return names


def select_janken_candidate(snapshot: Snapshot, match_id: Any,
                            rng: Optional[Any] = None) -> str:
    """
    Pick the janken entrant for a match.

    Among the members who opted in, the ones confirmed least often within
    the match's league win; remaining ties are broken with ``rng.choice``.

    Parameters
    ----------
    snapshot : Snapshot
        Current state
    match_id : Any
        Match id
    rng : Optional[Any]
        Object with a ``choice`` method (default: the ``random`` module)

    Returns
    -------
    str
        Name of the selected member

    Raises
    ------
    JankenSelectionError
        If the match is unknown or already confirmed, has no league, or has
        no candidates
    """
    match = snapshot.find_match(match_id)
    if match is None:
        raise JankenSelectionError('試合が見つかりません。')
    if match.janken_confirmed.strip():
        raise JankenSelectionError('既に確定者がいるため、自動選出をスキップしました。')

    league = league_for_match(match, snapshot.leagues)
    if league is None:
        raise JankenSelectionError('この試合が属するリーグが特定できないため、自動選出ができません。')

    wins = janken_win_counts(m for m in snapshot.matches if match_in_league(m, league))

    candidates = janken_candidates(snapshot, match)
    if not candidates:
        raise JankenSelectionError('立候補者がいません。')

    fewest = min(wins.get(name, 0) for name in candidates)
    tied = [name for name in candidates if wins.get(name, 0) == fewest]
    return (rng or random).choice(tied)


def match_year(match: Match) -> int:
    return parse_date(match.date).year


def available_years(snapshot: Snapshot, today: Optional[datetime] = None) -> List[int]:
    """Distinct match years, newest first; the current year when empty."""
    years = sorted({match_year(m) for m in snapshot.matches}, reverse=True)
    return years or [(today or datetime.now()).year]


def matches_in_year(snapshot: Snapshot, year: int) -> List[Match]:
    return [m for m in snapshot.matches if match_year(m) == year]


def janken_candidate_counts(snapshot: Snapshot, matches: Iterable[Match]) -> Dict[str, int]:
    """How often each member opted in to the janken draw."""
    match_ids = {m.id for m in matches}
    counts: Dict[str, int] = {}
    for match_id, member_name, record in snapshot.attendance.items():
        if match_id in match_ids and record.janken_participate:
            counts[member_name] = counts.get(member_name, 0) + 1
    return counts


def attendance_counts(snapshot: Snapshot, matches: Iterable[Match]) -> Dict[str, int]:
    """How many of the given matches each member attended."""
    matches = list(matches)
    counts: Dict[str, int] = {}
    for member in snapshot.members:
        attended = sum(
            1 for match in matches
            if is_attending(effective_status(match, snapshot.attendance.get(match.id, member.name)))
        )
        if attended:
            counts[member.name] = attended
    return counts


RANKING_KINDS: Dict[str, Callable[[Snapshot, List[Match]], Dict[str, int]]] = {
    'janken-confirmed': lambda snapshot, matches: janken_win_counts(matches),
    'janken-candidate': janken_candidate_counts,
    'attendance': attendance_counts,
}


def ranking_for(snapshot: Snapshot, kind: str, matches: List[Match]) -> List[RankingEntry]:
    """
    Build one of the rankings shown on the rankings view.

    Parameters
    ----------
    snapshot : Snapshot
        Current state
    kind : str
        One of ``RANKING_KINDS``
    matches : List[Match]
        Matches the ranking covers (a year or a league)
    """
    try:
        counter = RANKING_KINDS[kind]
    except KeyError:
        raise ValueError(f"Unknown ranking kind: {kind}") from None
    return compute_ranking(counter(snapshot, matches))
