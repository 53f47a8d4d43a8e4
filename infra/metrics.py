"""Prometheus-backed metrics hooks for the exit monitor and pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from prometheus_client import REGISTRY, Counter, Gauge, Summary, start_http_server

logger = logging.getLogger(__name__)

METRIC_PREFIX = "autoexit_"


@dataclass
class PassStats:
    status: str  # "ok" | "skipped_busy" | "skipped_simulated" | "no_session" | "error"
    positions: int
    triggered: int
    executed: int
    duration_seconds: float


class MetricsRecorder:
    """
    Expose monitor pass stats via Prometheus.

    Singleton pattern to prevent duplicate metric registration errors.
    """
    _instance: Optional['MetricsRecorder'] = None
    _initialized: bool = False

    def __new__(cls, enabled: bool = True, port: int = 9110):
        """Ensure only one MetricsRecorder instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, enabled: bool = True, port: int = 9110) -> None:
        # Skip re-initialization if already initialized
        if self.__class__._initialized:
            return

        self._enabled = bool(enabled)
        self._port = port
        self._started = False
        self.__class__._initialized = True

        self._last_pass_stats: Optional[PassStats] = None
        self._exit_outcomes: Dict[str, int] = {}

        if not self._enabled:
            self._pass_summary = None
            self._pass_counter = None
            self._exit_counter = None
            self._pending_gauge = None
            self._open_positions_gauge = None
            return

        self._pass_summary = Summary(  # type: ignore[assignment]
            "autoexit_pass_duration_seconds",
            "Duration of a full exit-monitor pass",
        )
        self._pass_counter = Counter(  # type: ignore[assignment]
            "autoexit_pass_total",
            "Total monitor passes by status",
            labelnames=("status",),
        )
        self._exit_counter = Counter(  # type: ignore[assignment]
            "autoexit_exit_attempts_total",
            "Exit pipeline outcomes",
            labelnames=("action", "outcome"),
        )
        self._pending_gauge = Gauge(  # type: ignore[assignment]
            "autoexit_pending_exits",
            "Triggered exits awaiting execution",
        )
        self._open_positions_gauge = Gauge(  # type: ignore[assignment]
            "autoexit_open_positions",
            "Open positions seen in the last pass",
        )

    @classmethod
    def _reset_for_testing(cls) -> None:
        """
        Reset singleton state for testing.
        WARNING: Only call from test fixtures/teardown.
        """
        if cls._instance is not None:
            for collector in list(REGISTRY._collector_to_names):
                names = REGISTRY._collector_to_names.get(collector, set())
                if any(name.startswith(METRIC_PREFIX) for name in names):
                    try:
                        REGISTRY.unregister(collector)
                    except KeyError:
                        pass  # Already unregistered

        cls._instance = None
        cls._initialized = False

    def start(self) -> None:
        if not self._enabled or self._started:
            return
        try:
            start_http_server(self._port)
        except OSError as exc:
            self._enabled = False
            logger.error("Failed to start metrics exporter on port %s: %s", self._port, exc)
            return
        self._started = True
        logger.info("Prometheus metrics exporter listening on 0.0.0.0:%s", self._port)

    def is_enabled(self) -> bool:
        return self._enabled

    def observe_pass(self, stats: PassStats) -> None:
        if self._enabled:
            assert self._pass_summary and self._pass_counter and self._open_positions_gauge
            self._pass_summary.observe(stats.duration_seconds)
            self._pass_counter.labels(status=stats.status).inc()
            if stats.status == "ok":
                self._open_positions_gauge.set(stats.positions)
        self._last_pass_stats = stats

    def record_exit(self, action: str, outcome: str) -> None:
        key = f"{action}:{outcome}"
        self._exit_outcomes[key] = self._exit_outcomes.get(key, 0) + 1
        if self._enabled and self._exit_counter:
            self._exit_counter.labels(action=action, outcome=outcome).inc()

    def record_pending(self, count: int) -> None:
        if self._enabled and self._pending_gauge:
            self._pending_gauge.set(max(count, 0))

    def last_pass(self) -> Optional[PassStats]:
        return self._last_pass_stats

    def exit_outcomes(self) -> Dict[str, int]:
        return dict(self._exit_outcomes)


__all__ = ["MetricsRecorder", "PassStats"]
