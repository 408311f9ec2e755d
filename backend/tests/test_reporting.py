from __future__ import annotations

import datetime as dt
import io

from openpyxl import load_workbook

from eodreport import reporting
from eodreport.schemas import TaskEntry


def test_single_report_csv_keeps_commas_unescaped():
    tasks = [
        TaskEntry(name="Fix, bug", time=1.5, status="Completed"),
        TaskEntry(name="Deploy", time=2, status="In Progress"),
    ]

    content = reporting.tasks_to_csv(tasks, "2024-01-15 17:00:00 EST")

    assert content.splitlines() == [
        "Date (EST),Task Name,Time Spent,Status",
        "2024-01-15 17:00:00 EST,Fix, bug,1.5,Completed",
        "2024-01-15 17:00:00 EST,Deploy,2,In Progress",
    ]


def test_multi_report_csv_from_enriched_reports():
    reports = [
        {
            "date": dt.date(2024, 1, 15),
            "client_name": "Acme Co",
            "tasks": [{"name": "Fix, bug", "time": 0.25, "status": "Completed"}],
        },
        {"date": dt.date(2024, 1, 16), "client_name": "Globex", "tasks": []},
    ]

    rows = reporting.flatten_report_tasks(reports)
    content = reporting.reports_to_csv(rows)

    assert content == "Date,Client,Task Name,Time Spent,Status\n2024-01-15,Acme Co,Fix, bug,0.25,Completed"


def test_multi_report_csv_blanks_missing_fields():
    content = reporting.reports_to_csv([{"name": "Orphan"}])

    assert content.splitlines()[1] == ",,Orphan,,"


def test_history_xlsx_has_header_and_numeric_times():
    rows = [{"date": "2024-01-15", "clientName": "Acme Co", "name": "Deploy", "time": 1.5, "status": "Completed"}]

    workbook = load_workbook(io.BytesIO(reporting.reports_to_xlsx(rows)))
    sheet = workbook.active

    assert [cell.value for cell in sheet[1]] == reporting.MULTI_REPORT_HEADER
    assert [cell.value for cell in sheet[2]] == ["2024-01-15", "Acme Co", "Deploy", 1.5, "Completed"]


def test_history_export_filename_variants():
    start, end = dt.date(2024, 1, 1), dt.date(2024, 1, 31)

    assert reporting.history_export_filename(None, None, None) == "all_tasks.csv"
    assert reporting.history_export_filename("acme", start, end) == "all_tasks_acme_2024-01-01_to_2024-01-31.csv"
    assert reporting.history_export_filename(None, start, None) == "all_tasks_from_2024-01-01.csv"
    assert reporting.history_export_filename(None, None, end, extension="xlsx") == "all_tasks_until_2024-01-31.xlsx"


def test_format_duration():
    assert reporting.format_duration(0.5) == "30 minutes"
    assert reporting.format_duration(1) == "1 hour"
    assert reporting.format_duration(2) == "2 hours"
    assert reporting.format_duration(1.25) == "1 hour 15 minutes"
    assert reporting.format_duration(2.999) == "3 hours"


def test_status_emoji():
    assert reporting.status_emoji("Completed") == "✅"
    assert reporting.status_emoji("In Progress") == "🔄"
    assert reporting.status_emoji("On Hold") == "⏸️"
    assert reporting.status_emoji("Cancelled") == "❌"
    assert reporting.status_emoji("Blocked") == "📝"


def test_email_subject_and_body():
    tasks = [
        TaskEntry(name="Fix login", time=1.5, status="Completed"),
        TaskEntry(name="Plan sprint", time=0.5, status="In Progress"),
    ]

    subject = reporting.generate_email_subject("Dana", "2024-01-15 17:00:00 EST")
    body = reporting.generate_email_body("Acme Co", "2024-01-15 17:00:00 EST", tasks, "Dana")

    assert subject == "Dana's End-of-Day Report – 2024-01-15 17:00:00 EST"
    assert body.startswith("Hey Acme Co,\n\nHere's what I've completed today:\n\n")
    assert "Fix login – 1 hour 30 minutes (Completed ✅)\n\n" in body
    assert "Plan sprint – 30 minutes (In Progress 🔄)\n\n" in body
    assert "Total Time: 2 hours\n\n" in body
    assert body.endswith("Have a great rest of your day! 😊\n\nDana")


def test_email_body_without_tasks():
    assert reporting.generate_email_body("Acme Co", "today", [], "Dana") == "No tasks were logged today."


def test_est_helpers_use_report_timezone():
    instant = dt.datetime(2024, 1, 16, 3, 30, tzinfo=dt.timezone.utc)

    assert reporting.est_today(instant) == dt.date(2024, 1, 15)
    assert reporting.est_timestamp(instant) == "2024-01-15 22:30:00 EST"
