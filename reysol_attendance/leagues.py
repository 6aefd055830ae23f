#!/usr/bin/env python3
"""
League and match selection for the member views.

Leagues bucket matches by month range. A match belongs to a league when it
names the league explicitly or when its date falls inside the league
window; both rules apply at once.
"""
from datetime import datetime
from typing import List, Optional

from .dates import in_window, league_window, parse_date, start_of_day
from .snapshot import League, Match, Snapshot


def sort_matches(matches: List[Match]) -> List[Match]:
    """Matches ordered newest first."""
    return sorted(matches, key=lambda m: parse_date(m.date), reverse=True)


def sort_leagues(leagues: List[League]) -> List[League]:
    """Leagues ordered by start, newest first."""
    return sorted(leagues, key=lambda lg: parse_date(lg.start), reverse=True)


def match_in_league(match: Match, league: League) -> bool:
    if match.league_id and str(match.league_id) == str(league.id):
        return True
    return in_window(parse_date(match.date), league_window(league.start, league.end))


def league_for_match(match: Match, leagues: List[League]) -> Optional[League]:
    """
    Find the league a match belongs to.

    An explicit ``leagueId`` wins; otherwise the first league whose window
    contains the match date.
    """
    if match.league_id:
        explicit = next((lg for lg in leagues if str(lg.id) == str(match.league_id)), None)
        if explicit:
            return explicit
    match_date = parse_date(match.date)
    return next(
        (lg for lg in leagues if in_window(match_date, league_window(lg.start, lg.end))),
        None,
    )


def league_matches(snapshot: Snapshot, league: League) -> List[Match]:
    """All matches of a league, newest first."""
    return [m for m in sort_matches(snapshot.matches) if match_in_league(m, league)]


def default_league(snapshot: Snapshot, today: Optional[datetime] = None) -> Optional[League]:
    """
    Pick the league a member most likely wants to see.

    Preference order:
    1. A league whose window contains today and that has matches
    2. The league of the latest match

    Parameters
    ----------
    snapshot : Snapshot
        Current state
    today : Optional[datetime]
        Reference time (default: now)

    Returns
    -------
    Optional[League]
        Selected league or None when no league applies
    """
    if not snapshot.leagues:
        return None
    today = today or datetime.now()
    leagues = sort_leagues(snapshot.leagues)

    for league in leagues:
        window = league_window(league.start, league.end)
        if in_window(today, window) and any(match_in_league(m, league) for m in snapshot.matches):
            return league

    matches = sort_matches(snapshot.matches)
    if not matches:
        return None
    return league_for_match(matches[0], leagues)


def default_match(matches: List[Match], today: Optional[datetime] = None) -> Optional[Match]:
    """
    Nearest upcoming match, else the most recent one.

    Parameters
    ----------
    matches : List[Match]
        Candidate matches, newest first
    today : Optional[datetime]
        Reference time (default: now)
    """
    if not matches:
        return None
    midnight = start_of_day(today or datetime.now())
    upcoming = [m for m in matches if parse_date(m.date) >= midnight]
    if upcoming:
        return upcoming[-1]
    return matches[0]


def recent_matches(snapshot: Snapshot) -> List[Match]:
    """The ``match_limit`` newest matches (the view without league selection)."""
    return sort_matches(snapshot.matches)[:snapshot.match_limit]


def is_past(match: Match, today: Optional[datetime] = None) -> bool:
    midnight = start_of_day(today or datetime.now())
    return start_of_day(parse_date(match.date)) < midnight
