from __future__ import annotations

import datetime as dt
import io
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from zoneinfo import ZoneInfo

from openpyxl import Workbook

from .config import settings
from .utils import format_hours, sum_hours

REPORT_TZ = ZoneInfo(settings.timezone)

SINGLE_REPORT_HEADER = ["Date (EST)", "Task Name", "Time Spent", "Status"]
MULTI_REPORT_HEADER = ["Date", "Client", "Task Name", "Time Spent", "Status"]

STATUS_EMOJI = (
    (("complete", "done", "finish"), "✅"),
    (("progress", "ongoing"), "🔄"),
    (("hold", "pause"), "⏸️"),
    (("cancel", "abandon"), "❌"),
)
DEFAULT_STATUS_EMOJI = "📝"


def _field(task: Any, name: str, default: Any = "") -> Any:
    if isinstance(task, Mapping):
        value = task.get(name, default)
    else:
        value = getattr(task, name, default)
    return default if value is None else value


def est_now(now: Optional[dt.datetime] = None) -> dt.datetime:
    now = now or dt.datetime.now(dt.timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    return now.astimezone(REPORT_TZ)


def est_timestamp(now: Optional[dt.datetime] = None) -> str:
    return est_now(now).strftime("%Y-%m-%d %H:%M:%S %Z")


def est_today(now: Optional[dt.datetime] = None) -> dt.date:
    return est_now(now).date()


def format_duration(hours: float) -> str:
    whole = int(math.floor(hours))
    minutes = int(math.floor((hours - whole) * 60 + 0.5))
    if minutes == 60:
        whole += 1
        minutes = 0
    if whole == 0:
        return f"{minutes} minutes"
    hour_label = f"{whole} hour{'s' if whole != 1 else ''}"
    if minutes == 0:
        return hour_label
    return f"{hour_label} {minutes} minutes"


def status_emoji(status: str) -> str:
    lowered = status.lower()
    for needles, emoji in STATUS_EMOJI:
        if any(needle in lowered for needle in needles):
            return emoji
    return DEFAULT_STATUS_EMOJI


def generate_email_subject(reporter_name: str, est_date: str) -> str:
    return f"{reporter_name}'s End-of-Day Report – {est_date}"


def generate_email_body(client_name: str, est_date: str, tasks: Sequence[Any], reporter_name: str) -> str:
    if not tasks:
        return "No tasks were logged today."

    lines = [f"Hey {client_name},\n\nHere's what I've completed today:\n\n"]
    for task in tasks:
        name = _field(task, "name")
        status = str(_field(task, "status"))
        duration = format_duration(float(_field(task, "time", 0)))
        lines.append(f"{name} – {duration} ({status} {status_emoji(status)})\n\n")

    total = sum_hours(_field(task, "time", 0) for task in tasks)
    lines.append(f"Total Time: {format_duration(total)}\n\n")
    lines.append(
        "If there's anything else you need, just let me know!\n\n"
        f"Have a great rest of your day! 😊\n\n{reporter_name}"
    )
    return "".join(lines)


# Fields are joined verbatim: a comma inside a task name shifts the columns.
def _join_rows(rows: Iterable[Sequence[Any]]) -> str:
    return "\n".join(",".join(str(cell) for cell in row) for row in rows)


def tasks_to_csv(tasks: Sequence[Any], est_date: str) -> str:
    rows: List[List[Any]] = [list(SINGLE_REPORT_HEADER)]
    for task in tasks:
        rows.append(
            [
                est_date,
                _field(task, "name"),
                format_hours(_field(task, "time", None)),
                _field(task, "status"),
            ]
        )
    return _join_rows(rows)


def flatten_report_tasks(reports: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """One row per task, annotated with its report's date and client name."""
    rows: List[Dict[str, Any]] = []
    for report in reports:
        report_date = report.get("date")
        if isinstance(report_date, dt.date):
            report_date = report_date.isoformat()
        for task in report.get("tasks", []):
            rows.append(
                {
                    **task,
                    "date": report_date,
                    "clientName": report.get("client_name") or report.get("clientName"),
                }
            )
    return rows


def _multi_report_row(task: Mapping[str, Any]) -> List[Any]:
    return [
        task.get("date") or "",
        task.get("clientName") or task.get("client_name") or "",
        task.get("name") or "",
        format_hours(task.get("time")) if task.get("time") is not None else "",
        task.get("status") or "",
    ]


def reports_to_csv(tasks: Sequence[Mapping[str, Any]]) -> str:
    rows: List[List[Any]] = [list(MULTI_REPORT_HEADER)]
    rows.extend(_multi_report_row(task) for task in tasks)
    return _join_rows(rows)


def reports_to_xlsx(tasks: Sequence[Mapping[str, Any]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Tasks"
    ws.append(MULTI_REPORT_HEADER)
    for task in tasks:
        row = _multi_report_row(task)
        time_value = task.get("time")
        row[3] = float(time_value) if time_value not in (None, "") else ""
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def history_export_filename(
    client_key: Optional[str],
    start_date: Optional[dt.date],
    end_date: Optional[dt.date],
    extension: str = "csv",
) -> str:
    filename = "all_tasks"
    if client_key:
        filename += f"_{client_key}"
    if start_date and end_date:
        filename += f"_{start_date}_to_{end_date}"
    elif start_date:
        filename += f"_from_{start_date}"
    elif end_date:
        filename += f"_until_{end_date}"
    return f"{filename}.{extension}"
