from __future__ import annotations

import datetime as dt
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, File, HTTPException, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import models
from .backup import backup_filename, dump_backup, import_reports, parse_backup
from .config import settings
from .database import db_session, engine, get_db
from .errors import ConnectivityError, PersistenceError, SyncError, ValidationError
from .reporting import (
    est_timestamp,
    est_today,
    flatten_report_tasks,
    generate_email_body,
    generate_email_subject,
    history_export_filename,
    reports_to_csv,
    reports_to_xlsx,
    tasks_to_csv,
)
from .schemas import (
    ClientCreateRequest,
    ConfigResponse,
    ConfigUpdateRequest,
    ImportFailureResponse,
    ImportResultResponse,
    ReportCreatedResponse,
    ReportCreateRequest,
    ReportPreviewRequest,
    ReportPreviewResponse,
    ReportResponse,
    SyncResultResponse,
    SyncStatusResponse,
)
from .services import daily_limit, delete_report, get_report, get_reports_by_filters, save_report, sync_clients
from .state import ConnectionMonitor, LocalConfigState
from .utils import sum_hours

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


models.Base.metadata.create_all(bind=engine)

local_config = LocalConfigState(settings.config_path)
connection_monitor = ConnectionMonitor()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.local_config.load()
    with db_session() as session:
        app.state.connection_monitor.check(session)
    logger.info("Remote store status on startup: %s", app.state.connection_monitor.status)
    yield
    app.state.local_config.save()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.state.local_config = local_config
app.state.connection_monitor = connection_monitor
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse({"detail": exc.message}, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


@app.exception_handler(PersistenceError)
async def _persistence_error(request: Request, exc: PersistenceError) -> JSONResponse:
    content: dict[str, Any] = {"detail": exc.message}
    if exc.outcome is not None:
        content["outcome"] = exc.outcome.as_dict()
    return JSONResponse(content, status_code=status.HTTP_502_BAD_GATEWAY)


@app.exception_handler(SyncError)
async def _sync_error(request: Request, exc: SyncError) -> JSONResponse:
    return JSONResponse({"detail": exc.message}, status_code=status.HTTP_502_BAD_GATEWAY)


@app.exception_handler(ConnectivityError)
async def _connectivity_error(request: Request, exc: ConnectivityError) -> JSONResponse:
    return JSONResponse({"detail": exc.message}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


def _attachment(filename: str) -> dict[str, str]:
    return {"Content-Disposition": f'attachment; filename="{filename}"'}


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/reports", response_model=ReportCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_report(
    payload: ReportCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ReportCreatedResponse:
    config: LocalConfigState = request.app.state.local_config
    client_key = payload.client_key or config.current_client()[0]
    client_name = payload.client_name or config.client_name(client_key)
    reporter_name = payload.reporter_name or config.reporter_name
    report_id = save_report(
        db,
        payload.date or est_today(),
        client_name,
        client_key,
        reporter_name,
        payload.tasks,
        hour_limit=daily_limit(config.work_mode),
    )
    return ReportCreatedResponse(id=report_id)


@app.get("/reports", response_model=list[ReportResponse])
def list_reports(
    client_key: Optional[str] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    db: Session = Depends(get_db),
) -> list[ReportResponse]:
    return get_reports_by_filters(db, client_key, start_date, end_date)


@app.get("/reports/export")
def export_report_history(
    format: str = "csv",
    client_key: Optional[str] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    db: Session = Depends(get_db),
) -> Response:
    if format not in {"csv", "xlsx"}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported export format")
    reports = get_reports_by_filters(db, client_key, start_date, end_date)
    rows = flatten_report_tasks(reports)
    filename = history_export_filename(client_key, start_date, end_date, extension=format)
    if format == "xlsx":
        return Response(reports_to_xlsx(rows), media_type=XLSX_MEDIA_TYPE, headers=_attachment(filename))
    return Response(reports_to_csv(rows), media_type="text/csv; charset=utf-8", headers=_attachment(filename))


@app.post("/reports/preview", response_model=ReportPreviewResponse)
def preview_report(payload: ReportPreviewRequest, request: Request) -> ReportPreviewResponse:
    config: LocalConfigState = request.app.state.local_config
    client_key = payload.client_key or config.current_client()[0]
    client_name = payload.client_name or config.client_name(client_key)
    reporter_name = payload.reporter_name or config.reporter_name
    est_date = est_timestamp()
    limit = daily_limit(config.work_mode)
    return ReportPreviewResponse(
        daily_limit=limit,
        remaining_hours=limit - sum_hours(task.time for task in payload.tasks),
        est_date=est_date,
        subject=generate_email_subject(reporter_name, est_date),
        body=generate_email_body(client_name, est_date, payload.tasks, reporter_name),
        csv=tasks_to_csv(payload.tasks, est_date),
    )


@app.get("/reports/{report_id}", response_model=ReportResponse)
def read_report(report_id: str, db: Session = Depends(get_db)) -> ReportResponse:
    report = get_report(db, report_id)
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    return report


@app.delete("/reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_report(report_id: str, db: Session = Depends(get_db)) -> Response:
    delete_report(db, report_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/backup")
def export_backup(db: Session = Depends(get_db)) -> Response:
    content = dump_backup(db)
    filename = backup_filename(est_today())
    return Response(content, media_type="application/json", headers=_attachment(filename))


def _import_response(result) -> ImportResultResponse:
    return ImportResultResponse(
        succeeded=result.succeeded,
        failed=[ImportFailureResponse(record=record, error=error) for record, error in result.failed],
    )


@app.post("/backup/import", response_model=ImportResultResponse)
def import_backup(document: Any = Body(...), db: Session = Depends(get_db)) -> ImportResultResponse:
    return _import_response(import_reports(db, document))


@app.post("/backup/upload", response_model=ImportResultResponse)
async def upload_backup(file: UploadFile = File(...), db: Session = Depends(get_db)) -> ImportResultResponse:
    document = parse_backup(await file.read())
    return _import_response(import_reports(db, document))


@app.get("/config", response_model=ConfigResponse)
def read_config(request: Request) -> ConfigResponse:
    config: LocalConfigState = request.app.state.local_config
    return ConfigResponse(**config.snapshot())


@app.patch("/config", response_model=ConfigResponse)
def update_config(payload: ConfigUpdateRequest, request: Request) -> ConfigResponse:
    config: LocalConfigState = request.app.state.local_config
    return ConfigResponse(**config.apply(payload.model_dump(exclude_unset=True)))


@app.post("/config/clients", response_model=ConfigResponse, status_code=status.HTTP_201_CREATED)
def add_client_profile(payload: ClientCreateRequest, request: Request) -> ConfigResponse:
    config: LocalConfigState = request.app.state.local_config
    return ConfigResponse(**config.add_client(payload.key, payload.name))


@app.delete("/config/clients/{key}", response_model=ConfigResponse)
def remove_client_profile(key: str, request: Request) -> ConfigResponse:
    config: LocalConfigState = request.app.state.local_config
    return ConfigResponse(**config.remove_client(key))


@app.get("/sync/status", response_model=SyncStatusResponse)
def sync_status(request: Request) -> SyncStatusResponse:
    monitor: ConnectionMonitor = request.app.state.connection_monitor
    return SyncStatusResponse(**monitor.snapshot())


@app.post("/sync/check", response_model=SyncStatusResponse)
def sync_check(request: Request, db: Session = Depends(get_db)) -> SyncStatusResponse:
    monitor: ConnectionMonitor = request.app.state.connection_monitor
    monitor.check(db)
    return SyncStatusResponse(**monitor.snapshot())


@app.post("/sync/clients", response_model=SyncResultResponse)
def sync_client_profiles(request: Request, db: Session = Depends(get_db)) -> SyncResultResponse:
    monitor: ConnectionMonitor = request.app.state.connection_monitor
    if monitor.is_disconnected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Remote store is disconnected",
        )
    config: LocalConfigState = request.app.state.local_config
    result = sync_clients(db, config.clients)
    return SyncResultResponse(inserted=result.inserted, updated=result.updated, unchanged=result.unchanged)
