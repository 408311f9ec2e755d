from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import ConnectivityError, PersistenceError, SyncError, ValidationError
from .models import Client, Report, Task, new_id, utcnow
from .schemas import TaskEntry
from .utils import normalize_client_key, normalize_client_map, sum_hours

logger = logging.getLogger(__name__)


TASK_STATUSES: Tuple[str, ...] = (
    "Completed",
    "In Progress",
    "On Hold",
    "Pending Review",
    "Cancelled",
    "Blocked",
    "Deferred",
)

# Hours one day's report may hold, per work mode.
DAILY_HOUR_LIMITS: Dict[str, float] = {"Full-Time": 7.0, "Part-Time": 4.0}

PHASE_CLIENT = "client"
PHASE_REPORT = "report"
PHASE_TASKS = "tasks"


@dataclass
class WriteOutcome:
    """Progress of a client -> report -> tasks write.

    Every phase commits on its own, so a failure leaves the earlier phases
    in place. ``failed_phase`` is ``None`` when all phases committed.
    """

    report_id: Optional[str] = None
    completed: List[str] = field(default_factory=list)
    failed_phase: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.failed_phase is None

    def fail(self, phase: str, error: Exception) -> "WriteOutcome":
        self.failed_phase = phase
        self.error = error
        return self

    def as_dict(self) -> Dict[str, Any]:
        return {
            "report_id": self.report_id,
            "completed": list(self.completed),
            "failed_phase": self.failed_phase,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class SyncResult:
    inserted: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Client registry
# ---------------------------------------------------------------------------


def list_clients(db: Session) -> Dict[str, str]:
    try:
        rows = db.execute(select(Client.key, Client.name)).all()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error fetching clients: %s", exc)
        raise PersistenceError("Clients could not be loaded") from exc
    return {key: name for key, name in rows}


def _read_client_names(db: Session, keys: List[str]) -> Dict[str, str]:
    rows = db.execute(select(Client.key, Client.name).where(Client.key.in_(keys))).all()
    return {key: name for key, name in rows}


def _upsert_statement(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(Client)
    elif dialect == "sqlite":
        stmt = sqlite.insert(Client)
    else:
        return None
    return stmt.on_conflict_do_update(
        index_elements=[Client.key],
        set_={"name": stmt.excluded.name},
    )


def sync_clients(db: Session, clients: Mapping[str, str]) -> SyncResult:
    """Upsert ``key -> name`` pairs into the remote registry as one batch.

    Conflicts on ``key`` are resolved by the store, last write wins. The
    pre-read only classifies keys for the returned :class:`SyncResult`. The
    batch commits once; on failure it is rolled back and reported as a whole.
    """
    pairs = normalize_client_map(clients)
    result = SyncResult()
    if not pairs:
        return result
    try:
        known = _read_client_names(db, list(pairs))
        for key, name in pairs.items():
            if key not in known:
                result.inserted.append(key)
            elif known[key] != name:
                result.updated.append(key)
            else:
                result.unchanged.append(key)

        stmt = _upsert_statement(db)
        if stmt is not None:
            db.execute(
                stmt,
                [
                    {"id": new_id(), "key": key, "name": name, "created_at": utcnow()}
                    for key, name in pairs.items()
                ],
            )
        else:
            for key, name in pairs.items():
                record = db.query(Client).filter(Client.key == key).one_or_none()
                if record is None:
                    db.add(Client(key=key, name=name))
                else:
                    record.name = name
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error syncing clients: %s", exc)
        raise SyncError("Clients could not be synchronized", detail=sorted(pairs)) from exc
    logger.info(
        "Synced %d client(s): %d inserted, %d updated",
        len(pairs),
        len(result.inserted),
        len(result.updated),
    )
    return result


def probe_remote(db: Session) -> int:
    """Minimal read used to decide whether the remote store is reachable."""
    try:
        return int(db.execute(select(func.count()).select_from(Client).limit(1)).scalar() or 0)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Remote store connection error: %s", exc)
        raise ConnectivityError("Remote store is not reachable", detail=str(exc)) from exc


# ---------------------------------------------------------------------------
# Report store
# ---------------------------------------------------------------------------


def _validate_tasks(tasks: Sequence[TaskEntry]) -> List[TaskEntry]:
    if not tasks:
        raise ValidationError("A report needs at least one task")
    entries: List[TaskEntry] = []
    for index, task in enumerate(tasks):
        if not task.name or not task.name.strip():
            raise ValidationError(f"Task {index + 1} has no name")
        if not task.status or not task.status.strip():
            raise ValidationError(f"Task {index + 1} has no status")
        if task.status not in TASK_STATUSES:
            raise ValidationError(f"Task {index + 1} has unknown status '{task.status}'")
        if task.time is None or task.time <= 0:
            raise ValidationError(f"Task {index + 1} needs a positive time")
        entries.append(task)
    return entries


def daily_limit(work_mode: Optional[str]) -> float:
    """Daily hour limit for ``work_mode``; anything but Full-Time gets the part-time limit."""
    return DAILY_HOUR_LIMITS.get(work_mode or "", DAILY_HOUR_LIMITS["Part-Time"])


def _check_daily_limit(tasks: Sequence[TaskEntry], limit: float) -> None:
    total = sum_hours(task.time for task in tasks)
    if round(total, 6) > limit:
        raise ValidationError(
            f"Tasks total {total:g} hours, above the daily limit of {limit:g} hours",
            detail={"daily_limit": limit, "total_hours": total},
        )


def write_report(
    db: Session,
    report_date: dt.date,
    client_name: str,
    client_key: str,
    reporter_name: str,
    tasks: Sequence[Any],
    total_hours: Optional[float] = None,
) -> WriteOutcome:
    """Run the client upsert, report insert and task batch insert in sequence.

    Never raises for remote failures; the returned outcome names the phase
    that failed. ``total_hours`` defaults to the sum of task times.
    """
    outcome = WriteOutcome()
    try:
        sync_clients(db, {client_key: client_name})
    except SyncError as exc:
        return outcome.fail(PHASE_CLIENT, exc)
    outcome.completed.append(PHASE_CLIENT)

    if total_hours is None:
        total_hours = sum_hours(task.time for task in tasks)
    report = Report(
        date=report_date,
        client_key=client_key,
        reporter_name=reporter_name,
        total_hours=total_hours,
    )
    try:
        db.add(report)
        db.commit()
        report_id = report.id
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error saving report: %s", exc)
        return outcome.fail(PHASE_REPORT, exc)
    outcome.report_id = report_id
    outcome.completed.append(PHASE_REPORT)

    if tasks:
        rows = [
            Task(
                report_id=report_id,
                position=position,
                name=task.name,
                time=float(task.time),
                status=task.status,
            )
            for position, task in enumerate(tasks)
        ]
        try:
            db.add_all(rows)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Error saving tasks for report %s, report kept without tasks: %s", report_id, exc)
            return outcome.fail(PHASE_TASKS, exc)
    outcome.completed.append(PHASE_TASKS)
    return outcome


def save_report(
    db: Session,
    report_date: dt.date,
    client_name: str,
    client_key: str,
    reporter_name: str,
    tasks: Sequence[TaskEntry],
    hour_limit: Optional[float] = None,
) -> str:
    """Validate and write one report, returning its id.

    With ``hour_limit`` set, a task list whose hours add up past it is
    refused before anything is written.
    """
    entries = _validate_tasks(tasks)
    if hour_limit is not None:
        _check_daily_limit(entries, hour_limit)
    key = normalize_client_key(client_key)
    if not key:
        raise ValidationError("A report needs a client key")
    outcome = write_report(db, report_date, client_name or key, key, reporter_name, entries)
    if outcome.failed_phase == PHASE_CLIENT:
        raise outcome.error  # type: ignore[misc]
    if not outcome.ok:
        raise PersistenceError(
            f"Report could not be saved ({outcome.failed_phase} step failed)",
            outcome=outcome,
            detail=outcome.as_dict(),
        ) from outcome.error
    logger.info(
        "Saved report %s for %s on %s with %d task(s)",
        outcome.report_id,
        key,
        report_date,
        len(entries),
    )
    return outcome.report_id  # type: ignore[return-value]


def _enrich_reports(db: Session, reports: List[Report]) -> List[Dict[str, Any]]:
    if not reports:
        return []
    client_names = list_clients(db)
    report_ids = [report.id for report in reports]
    try:
        tasks = (
            db.query(Task)
            .filter(Task.report_id.in_(report_ids))
            .order_by(Task.report_id, Task.position)
            .all()
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error fetching tasks: %s", exc)
        raise PersistenceError("Tasks could not be loaded") from exc

    tasks_by_report: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for task in tasks:
        tasks_by_report[task.report_id].append(
            {"name": task.name, "time": task.time, "status": task.status}
        )

    return [
        {
            "id": report.id,
            "date": report.date,
            "client_key": report.client_key,
            "client_name": client_names.get(report.client_key) or report.client_key,
            "reporter_name": report.reporter_name,
            "total_hours": report.total_hours,
            "created_at": report.created_at,
            "tasks": tasks_by_report.get(report.id, []),
        }
        for report in reports
    ]


def get_reports_by_filters(
    db: Session,
    client_key: Optional[str] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
) -> List[Dict[str, Any]]:
    key = normalize_client_key(client_key)
    try:
        query = db.query(Report)
        if key:
            query = query.filter(Report.client_key == key)
        if start_date:
            query = query.filter(Report.date >= start_date)
        if end_date:
            query = query.filter(Report.date <= end_date)
        reports = query.order_by(Report.date.desc(), Report.created_at.desc()).all()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error fetching reports: %s", exc)
        raise PersistenceError("Reports could not be loaded") from exc
    return _enrich_reports(db, reports)


def get_all_reports(db: Session) -> List[Dict[str, Any]]:
    return get_reports_by_filters(db)


def get_report(db: Session, report_id: str) -> Optional[Dict[str, Any]]:
    try:
        report = db.get(Report, report_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error fetching report %s: %s", report_id, exc)
        raise PersistenceError("Report could not be loaded") from exc
    if report is None:
        return None
    return _enrich_reports(db, [report])[0]


def delete_report(db: Session, report_id: str) -> None:
    """Delete a report; its tasks go with it through the store's cascade.

    Unknown ids are not an error.
    """
    try:
        deleted = (
            db.query(Report)
            .filter(Report.id == report_id)
            .delete(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error deleting report %s: %s", report_id, exc)
        raise PersistenceError("Report could not be deleted") from exc
    if deleted:
        logger.info("Deleted report %s", report_id)
