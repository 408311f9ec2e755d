from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from typing_extensions import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_serializer

from .utils import coerce_report_date


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


class TaskEntry(BaseModel):
    """A logged unit of work before it is persisted."""

    name: str
    time: float
    status: str


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    name: str
    time: float
    status: str


class ReportCreateRequest(BaseModel):
    date: Optional[dt.date] = None
    client_key: Optional[str] = None
    client_name: Optional[str] = None
    reporter_name: Optional[str] = None
    tasks: List[TaskEntry]


class ReportCreatedResponse(BaseModel):
    id: str


class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    date: dt.date
    client_key: str
    client_name: str
    reporter_name: str
    total_hours: float
    created_at: Optional[dt.datetime] = None
    tasks: List[TaskResponse] = Field(default_factory=list)

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "client_key": self.client_key,
            "client_name": self.client_name,
            "reporter_name": self.reporter_name,
            "total_hours": self.total_hours,
            "created_at": _serialize_datetime(self.created_at) if self.created_at else None,
            "tasks": [task.model_dump() for task in self.tasks],
        }


class ReportPreviewRequest(BaseModel):
    client_key: Optional[str] = None
    client_name: Optional[str] = None
    reporter_name: Optional[str] = None
    tasks: List[TaskEntry] = Field(default_factory=list)


class ReportPreviewResponse(BaseModel):
    est_date: str
    subject: str
    body: str
    csv: str
    daily_limit: float
    remaining_hours: float


class BackupTask(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: str
    time: float
    status: str = ""


class BackupRecord(BaseModel):
    """One report of a backup document, normalized from camelCase or snake_case keys."""

    model_config = ConfigDict(extra="ignore")

    date: dt.date
    client_key: str = Field(validation_alias=AliasChoices("clientKey", "client_key"))
    client_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("clientName", "client_name")
    )
    reporter_name: str = Field(
        default="", validation_alias=AliasChoices("reporterName", "reporter_name")
    )
    total_hours: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("totalHours", "total_hours")
    )
    tasks: List[BackupTask] = Field(default_factory=list)

    @field_validator("date", mode="before")
    @classmethod
    def _strip_time_of_day(cls, value: Any) -> Any:
        return coerce_report_date(value)

    @field_validator("client_key")
    @classmethod
    def _require_client_key(cls, value: str) -> str:
        key = value.strip()
        if not key:
            raise ValueError("client key must not be blank")
        return key

    @field_validator("tasks", mode="before")
    @classmethod
    def _tasks_or_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class ImportFailureResponse(BaseModel):
    record: Any
    error: str


class ImportResultResponse(BaseModel):
    succeeded: List[str]
    failed: List[ImportFailureResponse]


class ConfigResponse(BaseModel):
    work_mode: str
    csv_file_path: str
    reporter_name: str
    current_client_profile: str
    clients: Dict[str, str]


class ConfigUpdateRequest(BaseModel):
    work_mode: Optional[Literal["Full-Time", "Part-Time"]] = None
    csv_file_path: Optional[str] = None
    reporter_name: Optional[str] = None
    current_client_profile: Optional[str] = None
    clients: Optional[Dict[str, str]] = None


class ClientCreateRequest(BaseModel):
    key: str
    name: str


class SyncStatusResponse(BaseModel):
    status: Literal["checking", "connected", "disconnected"]
    checked_at: Optional[dt.datetime] = None
    last_error: Optional[str] = None


class SyncResultResponse(BaseModel):
    inserted: List[str]
    updated: List[str]
    unchanged: List[str]
