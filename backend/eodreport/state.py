from __future__ import annotations

import copy
import datetime as dt
import json
import logging
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from .errors import ConnectivityError, ValidationError
from .services import probe_remote
from .utils import normalize_client_key, normalize_client_map

logger = logging.getLogger(__name__)


WORK_MODES = ("Full-Time", "Part-Time")

DEFAULT_CONFIG: Dict[str, Any] = {
    "work_mode": "Full-Time",
    "csv_file_path": "task_log.csv",
    "reporter_name": "Your Name",
    "current_client_profile": "default",
    "clients": {"default": "Valued Client"},
}

STATUS_CHECKING = "checking"
STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"


def _merge_over_defaults(stored: Dict[str, Any]) -> Dict[str, Any]:
    config = copy.deepcopy(DEFAULT_CONFIG)
    for key in ("work_mode", "csv_file_path", "reporter_name", "current_client_profile"):
        value = stored.get(key)
        if isinstance(value, str):
            config[key] = value
    if config["work_mode"] not in WORK_MODES:
        config["work_mode"] = DEFAULT_CONFIG["work_mode"]
    stored_clients = stored.get("clients")
    if isinstance(stored_clients, dict):
        config["clients"].update(normalize_client_map(stored_clients))
    if config["current_client_profile"] not in config["clients"]:
        config["current_client_profile"] = next(iter(config["clients"]))
    return config


class LocalConfigState:
    """Locally persisted user configuration.

    Call :meth:`load` when the session starts; every mutation saves the
    document again, so :meth:`save` only needs calling directly after
    editing the file path or at shutdown.
    """

    def __init__(self, path: Path):
        self._lock = RLock()
        self.path = Path(path)
        self._config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)

    def load(self) -> Dict[str, Any]:
        with self._lock:
            stored: Any = {}
            if self.path.exists():
                try:
                    stored = json.loads(self.path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as exc:
                    logger.error("Failed to parse stored config %s: %s", self.path, exc)
                    stored = {}
            if not isinstance(stored, dict):
                stored = {}
            self._config = _merge_over_defaults(stored)
            return self.snapshot()

    def save(self) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._config, indent=2, ensure_ascii=False), encoding="utf-8")

    @property
    def reporter_name(self) -> str:
        with self._lock:
            return self._config["reporter_name"]

    @property
    def work_mode(self) -> str:
        with self._lock:
            return self._config["work_mode"]

    @property
    def clients(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._config["clients"])

    def current_client(self) -> Tuple[str, str]:
        with self._lock:
            key = self._config["current_client_profile"]
            return key, self._config["clients"].get(key, key)

    def client_name(self, key: str) -> str:
        with self._lock:
            return self._config["clients"].get(key, key)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._config)

    def apply(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            candidate = copy.deepcopy(self._config)
            if updates.get("work_mode") is not None:
                if updates["work_mode"] not in WORK_MODES:
                    raise ValidationError(f"Unknown work mode '{updates['work_mode']}'")
                candidate["work_mode"] = updates["work_mode"]
            if updates.get("csv_file_path") is not None:
                candidate["csv_file_path"] = updates["csv_file_path"].strip() or DEFAULT_CONFIG["csv_file_path"]
            if updates.get("reporter_name") is not None:
                candidate["reporter_name"] = updates["reporter_name"].strip()
            if updates.get("clients") is not None:
                clients = normalize_client_map(updates["clients"])
                if not clients:
                    raise ValidationError("At least one client profile is required")
                candidate["clients"] = clients
            if updates.get("current_client_profile") is not None:
                candidate["current_client_profile"] = updates["current_client_profile"]
            if candidate["current_client_profile"] not in candidate["clients"]:
                if updates.get("current_client_profile") is not None:
                    raise ValidationError(
                        f"Unknown client profile '{updates['current_client_profile']}'"
                    )
                candidate["current_client_profile"] = next(iter(candidate["clients"]))
            self._config = candidate
            self.save()
            return self.snapshot()

    def add_client(self, key: str, name: str) -> Dict[str, Any]:
        normalized_key = normalize_client_key(key)
        normalized_name = name.strip() if name else ""
        if not normalized_key or not normalized_name:
            raise ValidationError("Client key and name are required")
        with self._lock:
            self._config["clients"][normalized_key] = normalized_name
            self._config["current_client_profile"] = normalized_key
            self.save()
            return self.snapshot()

    def remove_client(self, key: str) -> Dict[str, Any]:
        with self._lock:
            clients = self._config["clients"]
            if key not in clients:
                return self.snapshot()
            if len(clients) <= 1:
                raise ValidationError("The last client profile cannot be removed")
            del clients[key]
            if self._config["current_client_profile"] == key:
                self._config["current_client_profile"] = next(iter(clients))
            self.save()
            return self.snapshot()


class ConnectionMonitor:
    """Last known reachability of the remote store.

    Only informs the UI and gates client sync; report writes never wait
    on it.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self.status: str = STATUS_CHECKING
        self.checked_at: Optional[dt.datetime] = None
        self.last_error: Optional[str] = None

    @property
    def is_disconnected(self) -> bool:
        with self._lock:
            return self.status == STATUS_DISCONNECTED

    def check(self, db: Session) -> str:
        try:
            probe_remote(db)
        except ConnectivityError as exc:
            status, error = STATUS_DISCONNECTED, exc.detail or exc.message
        else:
            status, error = STATUS_CONNECTED, None
        with self._lock:
            self.status = status
            self.last_error = error
            self.checked_at = dt.datetime.now(dt.timezone.utc)
            return self.status

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "status": self.status,
                "checked_at": self.checked_at,
                "last_error": self.last_error,
            }
