"""User-facing notification sink with subscriber fan-out and webhook delivery."""

from __future__ import annotations

import hashlib
import itertools
import json
import logging
import os
import socket
import threading
import time
import urllib.error
import urllib.request
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class NotificationSeverity(Enum):
    INFO = 10
    SUCCESS = 15
    WARNING = 20
    ERROR = 30

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.name.lower()

    @classmethod
    def from_string(cls, value: str, default: Optional["NotificationSeverity"] = None) -> "NotificationSeverity":
        if not value:
            return default or cls.WARNING
        normalized = value.strip().lower()
        for member in cls:
            if member.name.lower() == normalized:
                return member
        return default or cls.WARNING


_LOG_LEVELS = {
    NotificationSeverity.INFO: logging.INFO,
    NotificationSeverity.SUCCESS: logging.INFO,
    NotificationSeverity.WARNING: logging.WARNING,
    NotificationSeverity.ERROR: logging.ERROR,
}


@dataclass
class Notification:
    title: str
    message: str
    severity: NotificationSeverity = NotificationSeverity.INFO
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def kind(self) -> Optional[str]:
        return self.metadata.get("kind")


Listener = Callable[[Notification], None]


@dataclass
class NotificationConfig:
    webhook_url: Optional[str] = None
    min_severity: NotificationSeverity = NotificationSeverity.WARNING
    dry_run: bool = False
    timeout: float = 5.0
    dedupe_seconds: float = 60.0  # Suppress identical webhook posts within 60s
    history_size: int = 200


class NotificationCenter:
    """
    Explicitly owned notification sink.

    Features:
    - Subscribe/unsubscribe contract for in-process consumers (UI, logs)
    - Bounded history of recent notifications
    - Optional webhook forwarding with deduplication
    - start()/close() lifecycle; notifications after close are dropped
    """

    def __init__(self, config: Optional[NotificationConfig] = None) -> None:
        self._config = config or NotificationConfig()
        self._listeners: Dict[int, Listener] = {}
        self._tokens = itertools.count(1)
        self._history: Deque[Notification] = deque(maxlen=self._config.history_size)
        self._last_sent: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._open = False

    @classmethod
    def from_config(cls, raw_config: Optional[Dict[str, Any]]) -> "NotificationCenter":
        raw_config = raw_config or {}

        webhook_url = raw_config.get("webhook_url")
        if webhook_url and "${" in webhook_url:
            webhook_url = os.path.expandvars(webhook_url)
        if not webhook_url:
            env_key = raw_config.get("webhook_env", "NOTIFY_WEBHOOK_URL")
            webhook_url = os.getenv(env_key, "")

        config = NotificationConfig(
            webhook_url=webhook_url or None,
            min_severity=NotificationSeverity.from_string(
                raw_config.get("min_severity", "warning"),
                default=NotificationSeverity.WARNING,
            ),
            dry_run=bool(raw_config.get("dry_run", False)),
            timeout=float(raw_config.get("timeout_seconds", 5.0)),
            dedupe_seconds=float(raw_config.get("dedupe_seconds", 60.0)),
            history_size=int(raw_config.get("history_size", 200)),
        )
        return cls(config)

    def start(self) -> None:
        self._open = True

    def close(self) -> None:
        with self._lock:
            self._open = False
            self._listeners.clear()
            self._last_sent.clear()

    @property
    def is_open(self) -> bool:
        return self._open

    def subscribe(self, listener: Listener) -> int:
        with self._lock:
            token = next(self._tokens)
            self._listeners[token] = listener
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._listeners.pop(token, None) is not None

    def history(self) -> List[Notification]:
        with self._lock:
            return list(self._history)

    def notify(self, event: Notification) -> None:
        if not self._open:
            logger.debug("Notification sink closed, dropping: %s", event.title)
            return

        logger.log(_LOG_LEVELS[event.severity], "[%s] %s - %s", event.severity.name, event.title, event.message)

        with self._lock:
            self._history.append(event)
            listeners = list(self._listeners.values())

        for listener in listeners:
            try:
                listener(event)
            except Exception as exc:
                logger.error("Notification listener failed for '%s': %s", event.title, exc, exc_info=True)

        if self._config.webhook_url and event.severity.value >= self._config.min_severity.value:
            if not self._should_dedupe(event):
                self._send_webhook(event)

    def _fingerprint(self, event: Notification) -> str:
        content = f"{event.severity.name}|{event.title}|{event.message}"
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    def _should_dedupe(self, event: Notification) -> bool:
        fingerprint = self._fingerprint(event)
        now = time.monotonic()
        with self._lock:
            last = self._last_sent.get(fingerprint)
            if last is not None and now - last <= self._config.dedupe_seconds:
                logger.debug(f"Notification deduped: {event.title} (fingerprint={fingerprint[:8]}...)")
                return True
            self._last_sent[fingerprint] = now
            # Drop fingerprints outside the window
            stale = [fp for fp, ts in self._last_sent.items() if now - ts > self._config.dedupe_seconds]
            for fp in stale:
                del self._last_sent[fp]
        return False

    def _send_webhook(self, event: Notification) -> None:
        payload = self._build_payload(event)

        if self._config.dry_run:
            logger.info("[NOTIFY:%s] %s - %s | %s", event.severity.name, event.title, event.message, event.metadata)
            return

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._config.webhook_url,
            data=data,
            headers={"Content-Type": "application/json"},
        )
        try:
            with urllib.request.urlopen(request, timeout=self._config.timeout) as response:
                if response.status >= 400:
                    logger.error("Webhook rejected notification '%s': HTTP %s", event.title, response.status)
        except (urllib.error.URLError, urllib.error.HTTPError, socket.timeout) as exc:
            logger.error("Failed to deliver notification '%s': %s", event.title, exc)

    @staticmethod
    def _build_payload(event: Notification) -> Dict[str, Any]:
        line_items = [f"[{event.severity.name}] {event.title}", event.message]
        if event.metadata:
            try:
                context_json = json.dumps(event.metadata, sort_keys=True, default=str)
            except TypeError:
                context_json = str(event.metadata)
            line_items.append(f"context={context_json}")
        return {"text": " | ".join(filter(None, line_items))}


__all__ = ["Notification", "NotificationCenter", "NotificationConfig", "NotificationSeverity"]
