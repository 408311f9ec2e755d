"""Whole-dataset export and import of reports.

The backup document is a JSON list of reports with nested tasks. Import
accepts both the snake_case keys written by :func:`export_reports` and the
camelCase keys of older backups.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple, Union

from pydantic import ValidationError as SchemaError
from sqlalchemy.orm import Session

from .errors import ValidationError
from .schemas import BackupRecord
from .services import get_all_reports, write_report

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    succeeded: List[str] = field(default_factory=list)
    failed: List[Tuple[Any, str]] = field(default_factory=list)


def _isoformat(value: Any) -> Any:
    if isinstance(value, dt.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=dt.timezone.utc)
        return value.isoformat()
    if isinstance(value, dt.date):
        return value.isoformat()
    return value


def export_reports(db: Session) -> List[Dict[str, Any]]:
    documents: List[Dict[str, Any]] = []
    for report in get_all_reports(db):
        documents.append(
            {
                "id": report["id"],
                "date": _isoformat(report["date"]),
                "client_key": report["client_key"],
                "reporter_name": report["reporter_name"],
                "total_hours": report["total_hours"],
                "created_at": _isoformat(report["created_at"]),
                "clientName": report["client_name"],
                "tasks": [dict(task) for task in report["tasks"]],
            }
        )
    return documents


def dump_backup(db: Session) -> str:
    return json.dumps(export_reports(db), indent=2, ensure_ascii=False)


def backup_filename(day: dt.date) -> str:
    return f"eod-reports-backup-{day.isoformat()}.json"


def parse_backup(content: Union[str, bytes]) -> Any:
    try:
        return json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Backup file is not valid JSON", detail=str(exc)) from exc


def import_reports(db: Session, document: Any) -> ImportResult:
    """Re-create every report of ``document`` under a fresh id.

    Records that fail validation or whose writes fail are collected in
    ``failed`` and the loop moves on; nothing already written is rolled back.
    """
    if not isinstance(document, list):
        raise ValidationError("Invalid backup file format: expected a list of reports")

    result = ImportResult()
    for item in document:
        try:
            record = BackupRecord.model_validate(item)
        except SchemaError as exc:
            logger.warning("Skipping malformed backup record: %s", exc)
            result.failed.append((item, str(exc)))
            continue

        outcome = write_report(
            db,
            record.date,
            record.client_name or record.client_key,
            record.client_key,
            record.reporter_name,
            record.tasks,
            total_hours=record.total_hours,
        )
        if outcome.ok:
            result.succeeded.append(outcome.report_id)  # type: ignore[arg-type]
        else:
            logger.warning(
                "Error importing report dated %s (%s step failed): %s",
                record.date,
                outcome.failed_phase,
                outcome.error,
            )
            result.failed.append((item, str(outcome.error)))

    logger.info("Imported %d report(s), %d failed", len(result.succeeded), len(result.failed))
    return result
