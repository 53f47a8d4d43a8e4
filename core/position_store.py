"""
autoexit-monitor Core: Position Store

Read/update access to position records. Two backends:
- RestPositionStore: managed PostgREST-style backend over HTTP
- JsonPositionStore: local JSON file with atomic writes (paper/local runs)

Only the exit fields in PATCHABLE_FIELDS may be updated, and only while the
position is open: a closed position is never modified again.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from core.exceptions import ProviderError, StoreError
from core.http_client import request_json
from core.models import PATCHABLE_FIELDS, Position, PositionStatus

logger = logging.getLogger(__name__)


def validate_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported position patch fields: {sorted(unknown)}")
    status = patch.get("status")
    if status is not None and status not in (PositionStatus.OPEN.value, PositionStatus.CLOSED.value):
        raise ValueError(f"Invalid position status: {status}")
    return dict(patch)


class PositionStore(ABC):
    """Record store holding the authoritative copy of every position."""

    @abstractmethod
    def list_open_positions(self, user_id: str,
                            position_ids: Optional[Sequence[str]] = None) -> List[Position]:
        ...

    @abstractmethod
    def get_position(self, position_id: str) -> Optional[Position]:
        ...

    @abstractmethod
    def update_position(self, position_id: str, patch: Dict[str, Any]) -> None:
        ...


class RestPositionStore(PositionStore):
    """
    Position store backed by a PostgREST endpoint (`/rest/v1/positions`).

    Authenticates with the service api key plus the session's bearer token.
    """

    def __init__(self, base_url: str, api_key: str, access_token: Optional[str] = None,
                 table: str = "positions", timeout: float = 10.0, max_retries: int = 3):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.table = table
        self.timeout = timeout
        self.max_retries = max_retries
        logger.info(f"Initialized RestPositionStore at {self.base_url} (table={table})")

    def set_access_token(self, token: Optional[str]) -> None:
        self.access_token = token

    @property
    def _url(self) -> str:
        return f"{self.base_url}/rest/v1/{self.table}"

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Prefer": "return=representation",
        }

    def _call(self, method: str, params: Dict[str, Any], body: Optional[dict] = None) -> Any:
        try:
            return request_json(
                method,
                self._url,
                source="position_store",
                params=params,
                body=body,
                headers=self._headers(),
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        except ProviderError as exc:
            raise StoreError(str(exc)) from exc

    def list_open_positions(self, user_id: str,
                            position_ids: Optional[Sequence[str]] = None) -> List[Position]:
        params = {
            "select": "*",
            "user_id": f"eq.{user_id}",
            "status": f"eq.{PositionStatus.OPEN.value}",
        }
        if position_ids:
            params["id"] = f"in.({','.join(position_ids)})"
        rows = self._call("GET", params) or []
        return [Position.from_record(row) for row in rows]

    def get_position(self, position_id: str) -> Optional[Position]:
        rows = self._call("GET", {"select": "*", "id": f"eq.{position_id}"}) or []
        if not rows:
            return None
        return Position.from_record(rows[0])

    def update_position(self, position_id: str, patch: Dict[str, Any]) -> None:
        patch = validate_patch(patch)
        # Closed rows never match, so a second close cannot overwrite the first
        params = {"id": f"eq.{position_id}", "status": f"eq.{PositionStatus.OPEN.value}"}
        rows = self._call("PATCH", params, body=patch)
        if isinstance(rows, list) and not rows:
            raise StoreError(f"Position {position_id} not updated (missing or closed)")
        logger.debug(f"Updated position {position_id}: {sorted(patch)}")


class JsonPositionStore(PositionStore):
    """
    Position store persisted to a JSON file.

    Features:
    - Atomic writes (temp file + rename)
    - Thread-safe operations
    - open -> closed transition enforced, exactly once
    """

    def __init__(self, path: Optional[str] = None):
        path = path or os.getenv("POSITIONS_FILE", "data/positions.json")
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        logger.info(f"Initialized JsonPositionStore at {self.path}")

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StoreError(f"Failed to load positions from {self.path}: {e}") from e
        if isinstance(data, list):
            return {str(row["id"]): row for row in data}
        if isinstance(data, dict):
            return {str(k): v for k, v in data.get("positions", {}).items()}
        raise StoreError(f"Invalid positions file format: {self.path}")

    def _save(self, rows: Dict[str, Dict[str, Any]]) -> None:
        try:
            temp_fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=".positions_",
                suffix=".json.tmp",
            )
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump({"positions": rows}, f, indent=2)
            os.replace(temp_path, self.path)
        except OSError as e:
            raise StoreError(f"Failed to save positions: {e}") from e

    def add_position(self, position: Position) -> None:
        with self._lock:
            rows = self._load()
            rows[position.id] = position.to_record()
            self._save(rows)

    def list_open_positions(self, user_id: str,
                            position_ids: Optional[Sequence[str]] = None) -> List[Position]:
        with self._lock:
            rows = self._load()
        wanted = set(position_ids) if position_ids else None
        positions = []
        for row in rows.values():
            if row.get("status", PositionStatus.OPEN.value) != PositionStatus.OPEN.value:
                continue
            if row.get("user_id") not in (None, user_id):
                continue
            if wanted is not None and str(row.get("id")) not in wanted:
                continue
            positions.append(Position.from_record(row))
        return positions

    def get_position(self, position_id: str) -> Optional[Position]:
        with self._lock:
            row = self._load().get(str(position_id))
        return Position.from_record(row) if row else None

    def update_position(self, position_id: str, patch: Dict[str, Any]) -> None:
        patch = validate_patch(patch)
        with self._lock:
            rows = self._load()
            row = rows.get(str(position_id))
            if row is None:
                raise StoreError(f"Position {position_id} not found")
            if row.get("status", PositionStatus.OPEN.value) != PositionStatus.OPEN.value:
                raise StoreError(f"Position {position_id} is already closed")
            row.update(patch)
            self._save(rows)
        logger.debug(f"Updated position {position_id}: {sorted(patch)}")


def create_position_store(store_config: Optional[Dict[str, Any]],
                          access_token: Optional[str] = None) -> PositionStore:
    """Factory: build the configured store backend."""
    cfg = store_config or {}
    backend = (cfg.get("backend") or "json").lower()

    if backend == "json":
        return JsonPositionStore(cfg.get("json_path"))

    if backend == "rest":
        base_url = os.path.expandvars(cfg.get("url") or "")
        api_key = os.getenv(cfg.get("api_key_env", "STORE_API_KEY"), "")
        if not base_url or not api_key:
            raise ValueError("REST position store requires store.url and an api key in the environment")
        return RestPositionStore(
            base_url=base_url,
            api_key=api_key,
            access_token=access_token,
            table=cfg.get("table", "positions"),
            timeout=float(cfg.get("timeout_seconds", 10.0)),
        )

    raise ValueError(f"Unknown position store backend: {backend}")
