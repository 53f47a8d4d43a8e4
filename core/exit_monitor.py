"""
autoexit-monitor Core: Exit Monitor

Periodic control loop over open positions.

Flow (one pass):
1. Re-entrancy guard (skip if a pass is in flight)
2. Simulated-mode guard (no network I/O at all)
3. Session check
4. Fetch positions + prices, evaluate each
5. Execute pending exits sequentially through the pipeline
6. Summarize
7. Notify executed exits
8. Record last check, release guard

Timer ticks and manual calls share `run_pass_now`, the only path into the
pipeline.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from core.exceptions import BROADCAST_UNKNOWN, LOCAL_INCONSISTENCY, PENDING_SIGNATURE, TRANSIENT
from core.exit_evaluator import ExitEvaluator
from core.exit_pipeline import ExitPipeline
from core.metadata import PoolMetadata, reconcile_positions_with_pools
from core.models import ExitAction, ExitDecision, ExitSummary, PassResult
from core.position_store import PositionStore
from core.price_feed import DexScreenerPriceFeed
from core.session import Session, SessionProvider
from core.signer import Signer
from infra.metrics import MetricsRecorder, PassStats
from infra.notifications import Notification, NotificationCenter, NotificationSeverity

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 30000
SIMULATED_MODES = {"DRY_RUN", "PAPER"}


class MonitorRunState:
    """
    Process-wide monitor state, bound to start()/stop().

    The pass lock is the re-entrancy flag: acquired without blocking at pass
    entry and released in `finally`. All attributes are safe to read from
    outside a running pass.
    """

    def __init__(self):
        self._pass_lock = threading.Lock()
        self._pending_lock = threading.Lock()
        self.timer: Optional[threading.Thread] = None
        self.stop_event: Optional[threading.Event] = None
        self.last_check: Optional[datetime] = None
        self._pending: Dict[str, ExitDecision] = {}

    @property
    def running(self) -> bool:
        return self._pass_lock.locked()

    def try_enter(self) -> bool:
        return self._pass_lock.acquire(blocking=False)

    def leave(self) -> None:
        self._pass_lock.release()

    def pending(self) -> List[ExitDecision]:
        with self._pending_lock:
            return list(self._pending.values())

    def replace_pending(self, pending: Dict[str, ExitDecision]) -> None:
        with self._pending_lock:
            self._pending = dict(pending)

    def pending_map(self) -> Dict[str, ExitDecision]:
        with self._pending_lock:
            return dict(self._pending)

    def reset(self) -> None:
        self.timer = None
        self.stop_event = None
        self.last_check = None
        with self._pending_lock:
            self._pending.clear()


class ExitMonitor:
    """
    Exit monitor orchestrator.

    Responsibilities:
    - Own the timer and the re-entrancy guard
    - Coordinate store, price feed, evaluator and pipeline
    - Track triggered-but-unexecuted exits across passes
    - Emit summaries and trade notifications
    - Never let a pass failure escape or wedge the guard
    """

    def __init__(self,
                 store: PositionStore,
                 session_provider: SessionProvider,
                 price_feed: DexScreenerPriceFeed,
                 evaluator: ExitEvaluator,
                 pipeline: ExitPipeline,
                 signer: Signer,
                 notifier: NotificationCenter,
                 *,
                 mode: str = "LIVE",
                 position_ids: Optional[Sequence[str]] = None,
                 metadata_source: Optional[Callable[[], Iterable[PoolMetadata]]] = None,
                 execute_exits: bool = True,
                 metrics: Optional[MetricsRecorder] = None):
        self.store = store
        self.session_provider = session_provider
        self.price_feed = price_feed
        self.evaluator = evaluator
        self.pipeline = pipeline
        self.signer = signer
        self.notifier = notifier
        self.mode = (mode or "LIVE").upper()
        self.position_ids = list(position_ids) if position_ids else None
        self.metadata_source = metadata_source
        self.execute_exits = bool(execute_exits)
        self.metrics = metrics
        self._state = MonitorRunState()
        self._start_lock = threading.Lock()

        logger.info(f"ExitMonitor initialized (mode={self.mode}, simulated={self.is_simulated})")

    @property
    def is_simulated(self) -> bool:
        return self.mode in SIMULATED_MODES

    @property
    def state(self) -> MonitorRunState:
        return self._state

    @property
    def last_check(self) -> Optional[datetime]:
        return self._state.last_check

    def is_monitoring(self) -> bool:
        return self._state.timer is not None

    def pending_exits(self) -> List[ExitDecision]:
        return self._state.pending()

    # Control surface

    def start(self, interval_ms: int = DEFAULT_INTERVAL_MS) -> None:
        """Run one pass immediately, then every `interval_ms`. No-op if already monitoring."""
        with self._start_lock:
            if self._state.timer is not None:
                logger.info("Auto-exit monitor already running")
                return
            if interval_ms <= 0:
                raise ValueError(f"interval_ms must be positive, got {interval_ms}")

            logger.info(f"Starting auto-exit monitor with {interval_ms}ms interval")
            stop_event = threading.Event()
            timer = threading.Thread(
                target=self._run_timer,
                args=(stop_event, interval_ms / 1000.0),
                name="ExitMonitorTimer",
                daemon=True,
            )
            self._state.stop_event = stop_event
            self._state.timer = timer
            timer.start()

    def stop(self) -> None:
        """Cancel future ticks. A pass already in flight runs to completion."""
        with self._start_lock:
            if self._state.timer is None:
                return
            logger.info("Stopping auto-exit monitor")
            if self._state.stop_event is not None:
                self._state.stop_event.set()
            self._state.reset()

    def _run_timer(self, stop_event: threading.Event, interval_seconds: float) -> None:
        while not stop_event.is_set():
            self.run_pass_now(execute_exits=self.execute_exits)
            if stop_event.wait(interval_seconds):
                break
        logger.debug("Auto-exit timer exited")

    # Pass

    def run_pass_now(self, execute_exits: bool = True) -> Optional[PassResult]:
        """
        Run one evaluation pass through the shared guard.

        Returns:
            PassResult, or None when skipped (busy, simulated, no session) or failed
        """
        if not self._state.try_enter():
            logger.info("Auto-exit check already in progress, skipping...")
            self._observe("skipped_busy", started=time.monotonic())
            return None

        started = time.monotonic()
        status = "error"
        result: Optional[PassResult] = None
        try:
            if self.is_simulated:
                logger.info(f"[Demo Guard] Skipping auto-exit check in {self.mode} mode")
                status = "skipped_simulated"
                return None

            session = self.session_provider.get_session()
            if session is None:
                logger.info("No session for auto-exit check")
                status = "no_session"
                return None

            logger.info(f"Running auto-exit check, execute_exits={execute_exits}")
            result = self._run_pass(session, execute_exits)
            self._state.last_check = result.timestamp
            status = "ok"
            return result

        except Exception as e:
            logger.error(f"Auto-exit check error: {e}", exc_info=True)
            return None

        finally:
            try:
                self._observe(status, started=started, result=result)
            finally:
                self._state.leave()

    def _run_pass(self, session: Session, execute_exits: bool) -> PassResult:
        self._propagate_session(session)

        positions = self.store.list_open_positions(session.user_id, self.position_ids)
        if not positions and not self._state.pending():
            logger.info("No open positions to monitor")
            return PassResult(results=[], summary=ExitSummary())

        if self.metadata_source is not None:
            positions = reconcile_positions_with_pools(positions, self.metadata_source())

        prices = self.price_feed.get_prices([p.token_address for p in positions]) if positions else {}
        decisions = self.evaluator.evaluate_positions(positions, prices)

        if execute_exits:
            decisions = decisions + self._execute_pending(decisions)

        summary = ExitSummary.from_decisions(decisions)
        self._notify_executed(decisions)

        logger.info(
            f"Auto-exit: checked {summary.total} positions, "
            f"{summary.take_profit_triggered + summary.stop_loss_triggered} exits triggered "
            f"(TP={summary.take_profit_triggered}, SL={summary.stop_loss_triggered}), "
            f"{summary.executed} executed"
        )
        return PassResult(results=decisions, summary=summary)

    def _propagate_session(self, session: Session) -> None:
        for client in (self.store, self.pipeline.confirmation):
            setter = getattr(client, "set_access_token", None)
            if setter is not None:
                setter(session.access_token)

    def _execute_pending(self, decisions: List[ExitDecision]) -> List[ExitDecision]:
        """
        Merge this pass's triggered decisions into the pending set and run
        every pending-signature or transiently failed exit sequentially.
        Exits whose broadcast state is unknown are held, never resent.

        Returns:
            Carried-over decisions that were processed (not part of `decisions`)
        """
        previous = self._state.pending_map()
        evaluated_ids = {d.position_id for d in decisions}

        pending: Dict[str, ExitDecision] = {
            pid: d for pid, d in previous.items()
            if pid not in evaluated_ids and self._retryable(d)
        }
        carried_ids = set(pending)

        for decision in decisions:
            older = previous.get(decision.position_id)
            if older is not None and older.has_marker(BROADCAST_UNKNOWN):
                # Held while the position stays open
                if decision.triggered:
                    decision.error = older.error
                    decision.failure_category = older.failure_category
                    logger.warning(f"[AutoExit] Holding {decision.symbol}: earlier sell may already be on chain")
                pending[decision.position_id] = decision if decision.triggered else older
                continue
            if not decision.triggered:
                continue
            if older is not None and older.action == decision.action and older.quote is not None:
                decision.quote = older.quote
            decision.pending_signature = True
            decision.mark(PENDING_SIGNATURE, "exit requires wallet signature")
            pending[decision.position_id] = decision

        queue = [d for d in pending.values() if not d.executed and self._retryable(d)]
        queued_ids = {d.position_id for d in queue}
        if queue:
            if self.signer.is_available():
                logger.info(f"[AutoExit] {len(queue)} exits need wallet signature")
                for decision in queue:
                    self.pipeline.execute_exit(decision)
            else:
                logger.warning(f"[AutoExit] {len(queue)} exits waiting for a connected wallet")
                self.notifier.notify(Notification(
                    title="Wallet Not Connected",
                    message=f"{len(queue)} auto-exit(s) need a wallet signature",
                    severity=NotificationSeverity.WARNING,
                    metadata={
                        "kind": "signer_unavailable",
                        "position_ids": [d.position_id for d in queue],
                    },
                ))

        remaining = {
            pid: d for pid, d in pending.items()
            if not d.executed and d.failure_category != LOCAL_INCONSISTENCY
        }
        self._state.replace_pending(remaining)
        if self.metrics is not None:
            self.metrics.record_pending(len(remaining))

        return [d for pid, d in pending.items() if pid in carried_ids and pid in queued_ids]

    @staticmethod
    def _retryable(decision: ExitDecision) -> bool:
        return decision.pending_signature or decision.failure_category == TRANSIENT

    def _notify_executed(self, decisions: List[ExitDecision]) -> None:
        for decision in decisions:
            if not (decision.triggered and decision.executed):
                continue
            if decision.unconfirmed:
                # Pipeline already warned; no success-style message
                continue
            pct = f"{decision.profit_loss_percent:+.1f}%"
            if decision.action == ExitAction.TAKE_PROFIT:
                title = f"Take Profit: {decision.symbol}"
                message = f"Closed at {pct} profit"
                severity = NotificationSeverity.INFO
            else:
                title = f"Stop Loss: {decision.symbol}"
                message = f"Closed at {pct} loss"
                severity = NotificationSeverity.WARNING
            self.notifier.notify(Notification(
                title=title,
                message=message,
                severity=severity,
                metadata={
                    "kind": "trade",
                    "position_id": decision.position_id,
                    "action": decision.action.value,
                    "tx_id": decision.tx_id,
                },
            ))

    def _observe(self, status: str, started: float, result: Optional[PassResult] = None) -> None:
        if self.metrics is None:
            return
        summary = result.summary if result else ExitSummary()
        try:
            self.metrics.observe_pass(PassStats(
                status=status,
                positions=summary.total,
                triggered=summary.take_profit_triggered + summary.stop_loss_triggered,
                executed=summary.executed,
                duration_seconds=time.monotonic() - started,
            ))
        except Exception as e:
            logger.warning(f"Failed to record pass metrics: {e}", exc_info=True)
