#!/usr/bin/env python3
"""
Output formatting utilities for the reysol CLI.

Listings can be printed as a table, JSON, or CSV. Match summaries are
rendered as plain text blocks, one per status group.
"""
from typing import List, Dict, Any, Optional
import json
import csv
from io import StringIO

from tabulate import tabulate

from .aggregation import MatchSummary, RankingEntry, display_order
from .dates import days_before, format_date_with_day_and_time, format_short_date
from .snapshot import Status


NO_DATA = 'データがありません'
NO_USER = 'ユーザーを選択してください。'


def format_table(data: List[Dict[str, Any]], headers: Optional[List[str]] = None) -> str:
    """
    Format data as a table using tabulate.

    Parameters
    ----------
    data : List[Dict[str, Any]]
        List of dictionaries to format
    headers : Optional[List[str]]
        Column headers. If None, uses dict keys from first item.

    Returns
    -------
    str
        Formatted table string
    """
    if not data:
        return NO_DATA

    if headers is None:
        headers = list(data[0].keys())

    rows = [[str(item.get(key, '')) for key in headers] for item in data]
    return tabulate(rows, headers=headers, tablefmt='grid')


def format_json(data: List[Dict[str, Any]], indent: int = 2) -> str:
    # Non-serializable values (enums, datetimes) are written as strings
    return json.dumps(data, indent=indent, ensure_ascii=False, default=str)


def format_csv(data: List[Dict[str, Any]], headers: Optional[List[str]] = None) -> str:
    """
    Format data as CSV.

    Parameters
    ----------
    data : List[Dict[str, Any]]
        List of dictionaries to format
    headers : Optional[List[str]]
        Column headers. If None, uses dict keys from first item.

    Returns
    -------
    str
        Formatted CSV string
    """
    if not data:
        return ""

    if headers is None:
        headers = list(data[0].keys())

    output = StringIO()
    writer = csv.DictWriter(output, fieldnames=headers)
    writer.writeheader()
    for item in data:
        writer.writerow({key: item.get(key, '') for key in headers})
    return output.getvalue()


def print_output(data: List[Dict[str, Any]], format_type: str,
                 headers: Optional[List[str]] = None) -> None:
    """
    Print data in the specified format.

    Parameters
    ----------
    data : List[Dict[str, Any]]
        List of dictionaries to format
    format_type : str
        Output format: 'table', 'json', or 'csv'
    headers : Optional[List[str]]
        Column headers for table/CSV format
    """
    if format_type == 'json':
        print(format_json(data))
    elif format_type == 'csv':
        print(format_csv(data, headers))
    else:  # table (default)
        print(format_table(data, headers))


def ranking_rows(ranking: List[RankingEntry]) -> List[Dict[str, Any]]:
    return [{'rank': e.rank, 'name': e.name, 'count': e.count} for e in ranking]


def _group_line(label: str, names: List[str]) -> str:
    return f"{label}: {len(names)}名 ({', '.join(names)})"


def format_summary(summary: MatchSummary) -> str:
    """
    Render a match summary as text.

    Home matches list section totals for TOP and FRONT and the janken,
    morning-withdraw and big-flag helpers; away matches show one total
    and, with reserved seats, the attendee list. Empty groups are left out.

    Parameters
    ----------
    summary : MatchSummary
        Summary to render

    Returns
    -------
    str
        Multi-line text block
    """
    match = summary.match
    totals = summary.section_totals
    flags = summary.special_flag_groups
    venue = 'AWAY' if match.is_away else 'HOME'
    lines = [f"{format_short_date(match.date)} vs {match.opponent} [{venue}]"]

    if match.is_away:
        if match.seat_type:
            lines.append(f"座席: {'自由席' if match.is_away_free else '指定席'}")
        if match.deadline:
            lines.append(f"締切: {format_date_with_day_and_time(match.deadline)}")
        if match.queue_flag and match.queue_time:
            lines.append(f"並び開始: {format_date_with_day_and_time(match.queue_time)}")
        if match.line_org_flag and match.line_org_time:
            lines.append(f"列整理: {format_date_with_day_and_time(match.line_org_time)}")
        if match.away_notice:
            lines.append(f"お知らせ: {match.away_notice}")
    else:
        lines.append(f"回答期限: {days_before(match.date, 1)} 20:00")
        lines.append(f"じゃんけん大会 回答期限: {days_before(match.date, 2)} 20:00 "
                     f"(日立台公園 {days_before(match.date, 1)} 15:00)")
        if summary.janken_confirmed:
            lines.append(f"じゃんけん大会参加確定者: {', '.join(summary.janken_confirmed)}")
        if flags.janken_participate:
            lines.append(_group_line('じゃんけん大会立候補者', flags.janken_participate))
        if flags.morning_withdraw:
            lines.append(_group_line('朝の引き込み', flags.morning_withdraw))

    if match.is_away:
        members = totals.member_main + totals.member_back
        guests = totals.guests_main + totals.guests_back
        if totals.grand_total or totals.outside:
            lines.append(f"合計 {totals.grand_total}名 (メンバー{members} / 同伴{guests})")
        if totals.outside:
            lines.append(f"ゴール裏以外 合計{totals.outside}名")
        if match.is_away_reserved and summary.attendees:
            lines.append(f"出席者: ({', '.join(summary.attendees)})")
    else:
        if totals.main_total:
            lines.append(f"TOP 合計{totals.main_total}名 "
                         f"(メンバー{totals.member_main} / 同伴{totals.guests_main})")
        if totals.back_total:
            lines.append(f"FRONT 合計{totals.back_total}名 "
                         f"(メンバー{totals.member_back} / 同伴{totals.guests_back})")
        if totals.outside:
            lines.append(f"柏熱以外 合計{totals.outside}名")

    for status in display_order(match):
        names = summary.status_groups[status]
        if names:
            lines.append(_group_line(status.label(match.is_away), names))

    absent = summary.status_groups[Status.ABSENT]
    if absent:
        lines.append(_group_line(Status.ABSENT.label(), absent))
    if summary.unanswered:
        lines.append(_group_line('未回答', summary.unanswered))
    if not match.is_away and flags.big_flag:
        lines.append(_group_line('ビッグフラッグ搬入手伝い', flags.big_flag))
    return '\n'.join(lines)
