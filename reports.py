"""
Reports: per-project totals over a day / week / month window, and CSV export.

All window arithmetic happens on the clock of the `now` passed in: its own
zone when aware, system local time when naive.
"""

import csv
import io
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterable, List, Sequence, Tuple

from pydantic import BaseModel

from schemas import TimeEntryWithProject

NO_PROJECT_KEY = "none"
NO_PROJECT_NAME = "No Project"
NO_PROJECT_COLOR = "#e5e7eb"

CSV_HEADER = ["Task", "Project", "Start", "End", "Duration (s)"]
BOM = "\ufeff"


class Period(str, Enum):
    day = "day"
    week = "week"
    month = "month"


class ProjectTotal(BaseModel):
    key: str
    name: str
    color: str
    total: int = 0
    fraction: float = 0.0


class Report(BaseModel):
    groups: List[ProjectTotal]
    grand_total: int


# -----------------------------
# Windows
# -----------------------------

def localize(wall: datetime, tzinfo) -> datetime:
    """Attach a zone to a wall-clock time; None means system local time."""
    if tzinfo is None:
        # astimezone() on a naive value looks up the local offset for that moment
        return wall.astimezone()
    return wall.replace(tzinfo=tzinfo)


def select_window(period, now: datetime) -> Tuple[datetime, datetime]:
    """Aware [start, end] of the window containing `now`.

    Boundaries are built as wall-clock dates first and localized afterwards,
    so a window that crosses a DST change still starts at local midnight.
    """
    period = Period(period)
    today = now.date()
    if period is Period.day:
        first_day = today
    elif period is Period.week:
        # Weeks start on Monday
        first_day = today - timedelta(days=today.weekday())
    else:
        first_day = today.replace(day=1)
    start = localize(datetime.combine(first_day, time.min), now.tzinfo)
    end = localize(datetime.combine(today, time.max), now.tzinfo)
    return start, end


def filter_entries(entries: Iterable[TimeEntryWithProject], period, now: datetime) -> List[TimeEntryWithProject]:
    """Stopped entries whose start falls inside the window. Running entries never count."""
    start, end = select_window(period, now)
    return [e for e in entries if e.end_time is not None and start <= e.start_time <= end]


# -----------------------------
# Aggregation
# -----------------------------

def aggregate(entries: Iterable[TimeEntryWithProject]) -> Report:
    groups = {}
    grand_total = 0
    for e in entries:
        key = e.project_id or NO_PROJECT_KEY
        if key not in groups:
            groups[key] = ProjectTotal(
                key=key,
                name=e.project.name if e.project else NO_PROJECT_NAME,
                color=e.project.color if e.project else NO_PROJECT_COLOR,
            )
        duration = e.duration_seconds or 0
        groups[key].total += duration
        grand_total += duration

    for group in groups.values():
        group.fraction = group.total / grand_total if grand_total else 0.0
    return Report(groups=list(groups.values()), grand_total=grand_total)


def build_report(entries: Iterable[TimeEntryWithProject], period, now: datetime) -> Report:
    return aggregate(filter_entries(entries, period, now))


# -----------------------------
# Formatting
# -----------------------------

def format_duration(seconds: int) -> str:
    h = seconds // 3600
    m = (seconds % 3600) // 60
    return f"{h}h {m}m"


def format_clock(seconds: int) -> str:
    h = seconds // 3600
    m = (seconds % 3600) // 60
    s = seconds % 60
    return f"{h:02}:{m:02}:{s:02}"


def parse_clock(value: str) -> int:
    """Parse HH:MM or HH:MM:SS into seconds. Anything else is 0."""
    try:
        parts = [int(p) for p in value.strip().split(":")]
    except ValueError:
        return 0
    if len(parts) == 3:
        return parts[0] * 3600 + parts[1] * 60 + parts[2]
    if len(parts) == 2:
        return parts[0] * 3600 + parts[1] * 60
    return 0


def summary_text(report: Report, period) -> str:
    tracked = format_duration(report.grand_total) if report.grand_total > 0 else "no time"
    return f"You've tracked a total of {tracked} for the current {Period(period).value}."


# -----------------------------
# CSV export
# -----------------------------

def export_csv(entries: Sequence[TimeEntryWithProject]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for e in entries:
        writer.writerow([
            e.task_name,
            e.project.name if e.project else NO_PROJECT_NAME,
            e.start_time.isoformat(),
            e.end_time.isoformat() if e.end_time else "",
            e.duration_seconds or 0,
        ])
    # Rows are joined with newlines, no trailing terminator
    return BOM + buf.getvalue()[:-1]


def report_filename(period, today: date) -> str:
    return f"report-{Period(period).value}-{today.isoformat()}.csv"
