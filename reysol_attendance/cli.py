#!/usr/bin/env python3
"""
Reysol attendance CLI.

Command-line interface for answering match attendance, viewing match
summaries and rankings, and managing members, matches and leagues.
"""
from typing import Optional, List, Dict, Any
import logging
import sys

import click

from . import __version__
from .aggregation import (
    available_years,
    compute_match_summary,
    matches_in_year,
    ranking_for,
    RANKING_KINDS,
)
from .api import RemoteSyncClient
from .cli_output import NO_DATA, NO_USER, format_summary, print_output, ranking_rows
from .config import (
    ADMIN_PASSWORD_ENVVAR,
    API_URL_ENVVAR,
    DB_PATH_ENVVAR,
    DEFAULT_API_URL,
    DEFAULT_DB_PATH,
    REQUEST_TIMEOUT,
)
from .controller import AttendanceApp
from .dates import format_slash_date
from .leagues import (
    default_league,
    default_match,
    is_past,
    league_matches,
    match_in_league,
    recent_matches,
    sort_leagues,
    sort_matches,
)
from .snapshot import Match, Status
from .store import LocalSnapshotStore


CONTEXT_SETTINGS = dict(help_option_names=['-h', '--help'])

FORMAT_OPTION = click.option('--format', 'output_format', default='table',
                             type=click.Choice(['table', 'json', 'csv'], case_sensitive=False),
                             help='Output format (default: table)')


def echo_error(message: str) -> None:
    click.echo(f"Error: {message}", err=True)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(version=__version__, prog_name='reysol')
@click.option('--url', envvar=API_URL_ENVVAR, default=DEFAULT_API_URL,
              help='Attendance endpoint URL')
@click.option('--db-path', envvar=DB_PATH_ENVVAR, default=DEFAULT_DB_PATH,
              help='Path to local SQLite database file',
              type=click.Path(exists=False, dir_okay=False))
@click.option('--timeout', default=REQUEST_TIMEOUT, type=float,
              help='Request timeout in seconds (default: 30)')
@click.option('--offline', is_flag=True,
              help='Use the local snapshot only')
@click.option('--verbose', '-v', is_flag=True,
              help='Enable verbose output')
@click.pass_context
def cli(ctx: click.Context, url: str, db_path: str, timeout: float,
        offline: bool, verbose: bool) -> None:
    """
    Reysol attendance - answer and review match attendance.

    Examples:

        reysol matches

        reysol attend 1735689600000 --member 田中 --present --status 2

        reysol summary

        reysol admin member add 佐藤 --section 2
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    ctx.ensure_object(dict)
    ctx.obj['url'] = url
    ctx.obj['db_path'] = db_path
    ctx.obj['timeout'] = timeout
    ctx.obj['offline'] = offline
    ctx.obj['verbose'] = verbose


def get_app(ctx: click.Context, fetch: Optional[bool] = None,
            require_data: bool = True) -> AttendanceApp:
    """
    Get or start the application controller.

    Parameters
    ----------
    ctx : click.Context
        Click context
    fetch : Optional[bool]
        Whether to fetch from the endpoint on start (default: unless
        ``--offline`` was given)
    require_data : bool
        Exit when no snapshot could be loaded (default: True)

    Returns
    -------
    AttendanceApp
        Started controller
    """
    obj = ctx.find_root().obj
    if obj.get('app') is not None:
        return obj['app']

    store = LocalSnapshotStore(obj['db_path'])
    client = RemoteSyncClient(obj['url'], timeout=obj['timeout'], notifier=echo_error)
    app = AttendanceApp(store, client, notifier=echo_error)
    if fetch is None:
        fetch = not obj['offline']
    if not app.start(fetch=fetch) and require_data:
        if not fetch:
            echo_error("No local data. Run 'reysol sync' first.")
        sys.exit(1)

    obj['app'] = app
    ctx.find_root().call_on_close(app.close)
    return app


def resolve_member(app: AttendanceApp, member: Optional[str]) -> str:
    name = member or app.current_user
    if not name:
        echo_error(NO_USER)
        sys.exit(1)
    return name


def view_matches(app: AttendanceApp, league_id: Optional[str] = None,
                 show_all: bool = False) -> List[Match]:
    """Matches of the member view: a league, all, or the most recent ones."""
    snapshot = app.snapshot
    if show_all:
        return sort_matches(snapshot.matches)
    if league_id:
        league = snapshot.find_league(league_id)
        if league is None:
            raise click.BadParameter(f"Unknown league: {league_id}", param_hint='--league')
        return league_matches(snapshot, league)
    league = default_league(snapshot)
    if league is not None:
        return league_matches(snapshot, league)
    return recent_matches(snapshot)


def match_row(app: AttendanceApp, match: Match) -> Dict[str, Any]:
    league = next((lg for lg in app.snapshot.leagues if match_in_league(match, lg)), None)
    return {
        'id': match.id,
        'date': format_slash_date(match.date),
        'opponent': match.opponent,
        'location': match.location,
        'seat_type': match.seat_type,
        'league': league.name if league else '',
        'janken_confirmed': match.janken_confirmed,
        'past': is_past(match),
    }


@cli.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """
    Fetch the latest data and store it locally.

    Examples:

        reysol sync
    """
    app = get_app(ctx, fetch=False, require_data=False)
    try:
        app.refresh(strict=True)
    except Exception as e:
        echo_error(e)
        sys.exit(1)
    snapshot = app.snapshot
    click.echo(f"Members: {len(snapshot.members)}")
    click.echo(f"Matches: {len(snapshot.matches)}")
    click.echo(f"Attendance records: {len(snapshot.attendance)}")
    click.echo(f"Leagues: {len(snapshot.leagues)}")


@cli.command()
@FORMAT_OPTION
@click.pass_context
def members(ctx: click.Context, output_format: str) -> None:
    """List members and their seating sections."""
    app = get_app(ctx)
    data = [
        {'name': m.name, 'section': m.section.label, 'current': m.name == app.current_user}
        for m in app.snapshot.members
    ]
    print_output(data, output_format, ['name', 'section', 'current'])


@cli.command()
@FORMAT_OPTION
@click.pass_context
def leagues(ctx: click.Context, output_format: str) -> None:
    """List leagues, newest first."""
    app = get_app(ctx)
    data = []
    for league in sort_leagues(app.snapshot.leagues):
        data.append({
            'id': league.id,
            'name': league.name,
            'start': league.start,
            'end': league.end,
            'matches': len(league_matches(app.snapshot, league)),
        })
    print_output(data, output_format, ['id', 'name', 'start', 'end', 'matches'])


@cli.command()
@click.option('--league', 'league_id', type=str,
              help='Show the matches of a league')
@click.option('--all', 'show_all', is_flag=True,
              help='Show every match')
@click.option('--limit', type=int,
              help='Maximum number of matches to show')
@FORMAT_OPTION
@click.pass_context
def matches(ctx: click.Context, league_id: Optional[str], show_all: bool,
            limit: Optional[int], output_format: str) -> None:
    """
    List matches, newest first.

    Without options, shows the current league or, without leagues, the
    configured number of recent matches.

    Examples:

        reysol matches --league 1735689600000

        reysol matches --all --format csv
    """
    app = get_app(ctx)
    selected = view_matches(app, league_id, show_all)
    if limit is not None:
        selected = selected[:limit]
    data = [match_row(app, m) for m in selected]
    headers = ['id', 'date', 'opponent', 'location', 'seat_type', 'league',
               'janken_confirmed', 'past']
    print_output(data, output_format, headers)


@cli.command()
@click.argument('name', required=False)
@click.pass_context
def user(ctx: click.Context, name: Optional[str]) -> None:
    """Show or set the member you answer as."""
    app = get_app(ctx)
    if name is None:
        click.echo(app.current_user or NO_USER)
        return
    try:
        app.select_user(name)
    except Exception as e:
        echo_error(e)
        sys.exit(1)
    click.echo(f"Current user: {name}")


@cli.command()
@click.argument('match_id', required=False)
@click.option('--league', 'league_id', type=str,
              help='Pick the default match from this league')
@click.pass_context
def summary(ctx: click.Context, match_id: Optional[str], league_id: Optional[str]) -> None:
    """
    Show the attendance summary of a match.

    Without MATCH_ID, shows the nearest upcoming match.
    """
    app = get_app(ctx)
    if match_id is None:
        match = default_match(view_matches(app, league_id))
        if match is None:
            click.echo(NO_DATA)
            return
        match_id = match.id

    result = compute_match_summary(app.snapshot, match_id)
    if result is None:
        echo_error(f"Unknown match: {match_id}")
        sys.exit(1)
    click.echo(format_summary(result))


@cli.command()
@click.option('--year', type=int,
              help='Rank the matches of a year (default: latest year)')
@click.option('--league', 'league_id', type=str,
              help='Rank the matches of a league')
@click.option('--kind', default='janken-confirmed',
              type=click.Choice(sorted(RANKING_KINDS)),
              help='What to count (default: janken-confirmed)')
@FORMAT_OPTION
@click.pass_context
def rankings(ctx: click.Context, year: Optional[int], league_id: Optional[str],
             kind: str, output_format: str) -> None:
    """
    Show member rankings by year or league.

    Examples:

        reysol rankings --year 2025

        reysol rankings --league 1735689600000 --kind attendance
    """
    app = get_app(ctx)
    snapshot = app.snapshot
    if league_id:
        league = snapshot.find_league(league_id)
        if league is None:
            echo_error(f"Unknown league: {league_id}")
            sys.exit(1)
        selected = league_matches(snapshot, league)
    else:
        selected = matches_in_year(snapshot, year or available_years(snapshot)[0])

    print_output(ranking_rows(ranking_for(snapshot, kind, selected)),
                 output_format, ['rank', 'name', 'count'])


@cli.command()
@click.argument('match_id')
@click.option('--member', type=str,
              help='Member to answer for (default: current user)')
@click.option('--present/--absent', default=None,
              help='Attend or skip the match')
@click.option('--status', type=int,
              help='Arrival status code (1-4, 6, 7)')
@click.option('--guests', type=int,
              help='Number of guests you bring')
@click.option('--big-flag/--no-big-flag', default=None,
              help='Help carrying the big flag')
@click.option('--janken/--no-janken', default=None,
              help='Enter the janken draw')
@click.option('--morning-withdraw/--no-morning-withdraw', default=None,
              help='Help with the morning pull-in')
@click.pass_context
def attend(ctx: click.Context, match_id: str, member: Optional[str],
           present: Optional[bool], status: Optional[int], guests: Optional[int],
           big_flag: Optional[bool], janken: Optional[bool],
           morning_withdraw: Optional[bool]) -> None:
    """
    Answer attendance for a match.

    Each given option is saved as its own change, in the order listed.

    Examples:

        reysol attend 1735689600000 --present --status 1 --guests 2

        reysol attend 1735689600000 --member 田中 --absent
    """
    app = get_app(ctx)
    name = resolve_member(app, member)

    try:
        record = None
        if present is not None:
            record = app.set_presence(match_id, name, present)
        if status is not None:
            record = app.set_sub_status(match_id, name, status)
        if guests is not None:
            record = app.set_guests(match_id, name, guests)
        if big_flag is not None:
            record = app.set_big_flag(match_id, name, big_flag)
        if janken is not None:
            record = app.set_janken_participate(match_id, name, janken)
        if morning_withdraw is not None:
            record = app.set_morning_withdraw(match_id, name, morning_withdraw)
    except Exception as e:
        echo_error(e)
        sys.exit(1)

    if record is None:
        click.echo("Nothing to change.")
        return
    code = Status.coerce(record.status)
    match = app.snapshot.find_match(match_id)
    label = code.label(match.is_away) if code is not None else '未回答'
    click.echo(f"{name}: {label} (+{record.guest_count})")


@cli.group()
@click.option('--password', envvar=ADMIN_PASSWORD_ENVVAR,
              help='Admin password (prompted when omitted)')
@click.pass_context
def admin(ctx: click.Context, password: Optional[str]) -> None:
    """
    Admin commands: members, matches, leagues, janken and settings.
    """
    app = get_app(ctx)
    if not password:
        password = click.prompt('Admin password', hide_input=True)
    try:
        verified = app.verify_admin(password)
    except Exception as e:
        echo_error(e)
        sys.exit(1)
    if not verified:
        echo_error('パスワードが違います')
        sys.exit(1)
    ctx.obj['admin_password'] = password


def run_admin(action, *args: Any, **kwargs: Any) -> Any:
    """Run an admin action, reporting failures the CLI way."""
    try:
        return action(*args, **kwargs)
    except Exception as e:
        echo_error(e)
        sys.exit(1)


@admin.group()
def member() -> None:
    """Add, edit or delete members."""


@member.command('add')
@click.argument('name')
@click.option('--section', default=1, type=click.IntRange(1, 2),
              help='1 = TOP, 2 = FRONT (default: 1)')
@click.pass_context
def member_add(ctx: click.Context, name: str, section: int) -> None:
    app = get_app(ctx)
    added = run_admin(app.add_member, name, section)
    click.echo(f"Added member: {added.name} ({added.section.label})")


@member.command('edit')
@click.argument('name')
@click.option('--name', 'new_name', type=str, help='New name')
@click.option('--section', type=click.IntRange(1, 2), help='1 = TOP, 2 = FRONT')
@click.pass_context
def member_edit(ctx: click.Context, name: str, new_name: Optional[str],
                section: Optional[int]) -> None:
    app = get_app(ctx)
    current = app.snapshot.find_member(name)
    if current is None:
        echo_error(f"Unknown member: {name}")
        sys.exit(1)
    updated = run_admin(app.update_member, name, new_name or name,
                        section if section is not None else current.section)
    click.echo(f"Updated member: {updated.name} ({updated.section.label})")


@member.command('delete')
@click.argument('name')
@click.confirmation_option(prompt='Delete this member and all their answers?')
@click.pass_context
def member_delete(ctx: click.Context, name: str) -> None:
    app = get_app(ctx)
    run_admin(app.delete_member, name)
    click.echo(f"Deleted member: {name}")


def match_options(required: bool):
    """Options shared by ``match add`` and ``match edit``."""
    def decorator(func):
        options = [
            click.option('--date', required=required, help='Match date (YYYY-MM-DD)'),
            click.option('--opponent', required=required, help='Opponent name'),
            click.option('--location', type=click.Choice(['home', 'away']),
                         default='home' if required else None, help='home or away'),
            click.option('--seat-type', type=click.Choice(['free', 'reserved']),
                         help='Away seating'),
            click.option('--deadline', help='Away ticket deadline (YYYY-MM-DDTHH:MM)'),
            click.option('--queue/--no-queue', 'queue_flag', default=None,
                         help='Away free seating: queue start applies'),
            click.option('--queue-time', help='Queue start time'),
            click.option('--line-org/--no-line-org', 'line_org_flag', default=None,
                         help='Away free seating: line organization applies'),
            click.option('--line-org-time', help='Line organization time'),
            click.option('--notice', 'away_notice', help='Away notice text'),
            click.option('--league', 'league_id', help='Explicit league id'),
        ]
        for option in reversed(options):
            func = option(func)
        return func
    return decorator


def _given(**fields: Any) -> Dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


@admin.group()
def match() -> None:
    """Add, edit or delete matches."""


@match.command('add')
@match_options(required=True)
@click.pass_context
def match_add(ctx: click.Context, date: str, opponent: str, location: str,
              **fields: Any) -> None:
    app = get_app(ctx)
    added = run_admin(app.add_match, date, opponent, location, **_given(**fields))
    click.echo(f"Added match {added.id}: {format_slash_date(added.date)} vs {added.opponent}")


@match.command('edit')
@click.argument('match_id')
@match_options(required=False)
@click.pass_context
def match_edit(ctx: click.Context, match_id: str, **fields: Any) -> None:
    app = get_app(ctx)
    updated = run_admin(app.update_match, match_id, **_given(**fields))
    click.echo(f"Updated match {updated.id}: {format_slash_date(updated.date)} vs {updated.opponent}")


@match.command('delete')
@click.argument('match_id')
@click.confirmation_option(prompt='Delete this match and all its answers?')
@click.pass_context
def match_delete(ctx: click.Context, match_id: str) -> None:
    app = get_app(ctx)
    run_admin(app.delete_match, match_id)
    click.echo(f"Deleted match: {match_id}")


@admin.group()
def league() -> None:
    """Add, edit or delete leagues."""


@league.command('add')
@click.argument('name')
@click.argument('start')
@click.argument('end')
@click.pass_context
def league_add(ctx: click.Context, name: str, start: str, end: str) -> None:
    """Add a league running from START to END (YYYY-MM)."""
    app = get_app(ctx)
    added = run_admin(app.add_league, name, start, end)
    click.echo(f"Added league {added.id}: {added.name} ({added.start} - {added.end})")


@league.command('edit')
@click.argument('league_id')
@click.option('--name', type=str)
@click.option('--start', type=str)
@click.option('--end', type=str)
@click.pass_context
def league_edit(ctx: click.Context, league_id: str, name: Optional[str],
                start: Optional[str], end: Optional[str]) -> None:
    app = get_app(ctx)
    updated = run_admin(app.update_league, league_id, name, start, end)
    click.echo(f"Updated league {updated.id}: {updated.name} ({updated.start} - {updated.end})")


@league.command('delete')
@click.argument('league_id')
@click.pass_context
def league_delete(ctx: click.Context, league_id: str) -> None:
    app = get_app(ctx)
    run_admin(app.delete_league, league_id)
    click.echo(f"Deleted league: {league_id}")


@admin.group()
def janken() -> None:
    """Select or edit janken entrants."""


@janken.command('auto')
@click.argument('match_id')
@click.pass_context
def janken_auto(ctx: click.Context, match_id: str) -> None:
    """Pick the opted-in member with the fewest league wins."""
    app = get_app(ctx)
    winner = run_admin(app.auto_select_janken, match_id)
    click.echo(f"Selected: {winner}")


@janken.command('confirm')
@click.argument('match_id')
@click.argument('name')
@click.pass_context
def janken_confirm(ctx: click.Context, match_id: str, name: str) -> None:
    app = get_app(ctx)
    run_admin(app.confirm_janken, match_id, name)
    click.echo(f"Confirmed: {name}")


@janken.command('remove')
@click.argument('match_id')
@click.argument('name')
@click.pass_context
def janken_remove(ctx: click.Context, match_id: str, name: str) -> None:
    app = get_app(ctx)
    run_admin(app.remove_janken_confirmed, match_id, name)
    click.echo(f"Removed: {name}")


@admin.command('set-limit')
@click.argument('limit', type=int)
@click.pass_context
def set_limit(ctx: click.Context, limit: int) -> None:
    """Set how many recent matches members see."""
    app = get_app(ctx)
    run_admin(app.set_match_limit, limit)
    click.echo(f"Match limit: {limit}")


@admin.command('password')
@click.option('--new', 'new_password', prompt='New admin password',
              hide_input=True, confirmation_prompt=True)
@click.pass_context
def password(ctx: click.Context, new_password: str) -> None:
    """Change the admin password."""
    app = get_app(ctx)
    run_admin(app.change_admin_password, ctx.obj['admin_password'], new_password)
    click.echo("Admin password updated.")


def main() -> None:
    """
    Main entry point for CLI application.
    """
    cli()


if __name__ == '__main__':
    main()
