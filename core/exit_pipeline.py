"""
autoexit-monitor Core: Exit Pipeline

Drives a single triggered exit through:
1. Guard (signer available)
2. Load position (authoritative re-fetch)
3. Balance check (optional)
4. Quote
5. Build unsigned swap
6. Sign & broadcast
7. Confirm settlement
8. Persist closure
9. Notify

Stage failures are recorded on the decision with a marker prefix and never
raised. Persist (8) runs whenever (6) succeeded, even if (7) failed.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional

from core.confirmation import ConfirmationService, SolanaBalanceChecker
from core.exceptions import (
    PIPELINE_ERROR,
    TRANSIENT,
    BroadcastUnknown,
    BuildFailed,
    ConfirmationFailed,
    ExitPipelineError,
    NoBalance,
    PositionNotFound,
    ProviderError,
    QuoteUnavailable,
    SignerRejected,
    SignerUnavailable,
    StoreError,
)
from core.models import ExitAction, ExitDecision, ExitOutcome, Position, PositionStatus, SwapQuote
from core.position_store import PositionStore
from core.signer import Signer
from core.swap_provider import SOL_MINT, FeeOptions, JupiterSwapClient, UnsignedSwap
from infra.metrics import MetricsRecorder
from infra.notifications import Notification, NotificationCenter, NotificationSeverity

logger = logging.getLogger(__name__)

DEFAULT_SLIPPAGE_BPS = 1500  # 15%
DEFAULT_QUOTE_TTL_SECONDS = 20.0
DUST_BALANCE_RATIO = 0.01


def _pct(value: float) -> str:
    return f"{value:+.1f}%"


class ExitPipeline:
    """
    Executes exits for triggered decisions, one at a time.

    Safety:
    - No stage runs before its predecessor succeeded
    - Signing requests are never retried automatically
    - The store is written only after a successful broadcast
    """

    def __init__(self,
                 store: PositionStore,
                 swap_client: JupiterSwapClient,
                 signer: Signer,
                 confirmation: ConfirmationService,
                 notifier: NotificationCenter,
                 *,
                 base_mint: str = SOL_MINT,
                 slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
                 fee_options: Optional[FeeOptions] = None,
                 quote_ttl_seconds: float = DEFAULT_QUOTE_TTL_SECONDS,
                 balance_checker: Optional[SolanaBalanceChecker] = None,
                 metrics: Optional[MetricsRecorder] = None):
        self.store = store
        self.swap_client = swap_client
        self.signer = signer
        self.confirmation = confirmation
        self.notifier = notifier
        self.base_mint = base_mint
        self.slippage_bps = int(slippage_bps)
        self.fee_options = fee_options or FeeOptions()
        self.quote_ttl_seconds = float(quote_ttl_seconds)
        self.balance_checker = balance_checker
        self.metrics = metrics

        logger.info(
            f"ExitPipeline initialized: slippage={self.slippage_bps}bps, "
            f"priority={self.fee_options.priority_level} (max {self.fee_options.max_priority_lamports} lamports), "
            f"balance_check={'on' if balance_checker else 'off'}"
        )

    def execute_exit(self, decision: ExitDecision) -> ExitOutcome:
        """
        Run the full pipeline for one decision, mutating it in place.

        Returns:
            ExitOutcome mirroring decision.executed / tx_id / error
        """
        if not decision.triggered:
            return ExitOutcome(executed=False)

        logger.info(
            f"[AutoExit] Executing {decision.action.value} for {decision.symbol} "
            f"at {_pct(decision.profit_loss_percent)}"
        )

        try:
            signer_address = self._guard()
            position = self._load_position(decision)
            self._check_balance(position, signer_address)
            quote = self._get_quote(decision, position)
            payload = self._build(quote, signer_address)
            signature = self._sign_and_send(payload)
        except ExitPipelineError as exc:
            self._handle_stage_failure(decision, exc)
            return self._outcome(decision)
        except Exception as exc:
            logger.error(f"[AutoExit] Execute exit error for {decision.symbol}: {exc}", exc_info=True)
            decision.mark(PIPELINE_ERROR, str(exc) or exc.__class__.__name__)
            decision.failure_category = TRANSIENT
            self._record("error", decision)
            self._notify(
                "Exit Execution Failed",
                f"{decision.symbol}: {exc or 'Unknown error'}",
                NotificationSeverity.ERROR,
                decision,
                kind="exit_failed",
            )
            return self._outcome(decision)

        # Broadcast happened: from here on the exit counts as executed
        decision.executed = True
        decision.tx_id = signature
        decision.pending_signature = False
        decision.quote = None
        decision.error = None
        decision.failure_category = None

        confirmed = self._confirm(decision, signature)
        self._persist(decision, signature)

        if confirmed:
            self._record("executed", decision)
            title = "Take Profit Executed" if decision.action == ExitAction.TAKE_PROFIT else "Stop Loss Executed"
            self._notify(
                title,
                f"{decision.symbol} sold at {_pct(decision.profit_loss_percent)}",
                NotificationSeverity.SUCCESS,
                decision,
                kind="exit_executed",
            )
        else:
            decision.unconfirmed = True
            self._record("unconfirmed", decision)
            self._notify(
                "Exit Broadcast Unconfirmed",
                f"{decision.symbol} sell broadcast ({signature}) but settlement is not confirmed yet",
                NotificationSeverity.WARNING,
                decision,
                kind="exit_unconfirmed",
            )

        return self._outcome(decision)

    # Stages

    def _guard(self) -> str:
        if not self.signer.is_available() or not self.signer.address:
            raise SignerUnavailable("Connect wallet to execute auto-exit")
        return self.signer.address

    def _load_position(self, decision: ExitDecision) -> Position:
        try:
            position = self.store.get_position(decision.position_id)
        except StoreError as exc:
            raise ExitPipelineError(f"Could not load position: {exc}", original=exc) from exc
        if position is None or position.status != PositionStatus.OPEN.value:
            raise PositionNotFound(f"Position {decision.position_id} no longer open")
        return position

    def _check_balance(self, position: Position, owner: str) -> None:
        if self.balance_checker is None:
            return
        balance = self.balance_checker.token_balance(owner, position.token_address)
        if balance is None:
            return
        if balance <= 0 or balance < position.amount * DUST_BALANCE_RATIO:
            raise NoBalance(f"Wallet holds {balance} of {position.amount} expected tokens")

    def _sell_amount(self, position: Position) -> int:
        return int(math.floor(position.amount * (10 ** int(position.decimals))))

    def _get_quote(self, decision: ExitDecision, position: Position) -> SwapQuote:
        amount = self._sell_amount(position)
        cached = decision.quote
        if (cached is not None
                and cached.in_amount == amount
                and cached.age_seconds() <= self.quote_ttl_seconds):
            logger.debug(f"Reusing attached quote for {decision.symbol} ({cached.age_seconds():.1f}s old)")
            return cached

        try:
            quote = self.swap_client.quote(position.token_address, self.base_mint, amount, self.slippage_bps)
        except ProviderError as exc:
            raise QuoteUnavailable(f"Cannot sell {decision.symbol} - {exc}", original=exc) from exc
        decision.quote = quote
        return quote

    def _build(self, quote: SwapQuote, signer_address: str) -> UnsignedSwap:
        try:
            return self.swap_client.build_swap(quote, signer_address, self.fee_options)
        except ProviderError as exc:
            raise BuildFailed(f"Could not build swap transaction - {exc}", original=exc) from exc

    def _sign_and_send(self, payload: UnsignedSwap) -> str:
        result = self.signer.sign_and_send(payload)
        if result.broadcast_unknown:
            raise BroadcastUnknown(result.error or "No answer from wallet after signing request")
        if not result.success or not result.signature:
            raise SignerRejected(result.error or "Wallet rejected the transaction")
        return result.signature

    def _confirm(self, decision: ExitDecision, signature: str) -> bool:
        try:
            confirmed = self.confirmation.confirm(signature, decision.position_id, "sell")
        except Exception as exc:
            logger.error(f"[AutoExit] Transaction confirmation failed for {signature}: {exc}")
            decision.mark(ConfirmationFailed.marker, str(exc))
            return False
        if not confirmed:
            logger.warning(f"[AutoExit] Transaction {signature} not confirmed; closing position anyway")
            decision.mark(ConfirmationFailed.marker, "settlement not confirmed")
        return confirmed

    def _persist(self, decision: ExitDecision, signature: str) -> None:
        patch = {
            "status": PositionStatus.CLOSED.value,
            "exit_reason": decision.action.value,
            "exit_price": decision.current_price,
            "exit_tx_id": signature,
            "closed_at": datetime.now(timezone.utc).isoformat(),
            "profit_loss_percent": decision.profit_loss_percent,
        }
        try:
            self.store.update_position(decision.position_id, patch)
        except Exception as exc:
            logger.error(
                f"[AutoExit] Failed to record closure of {decision.position_id} (tx {signature}): {exc}",
                exc_info=True,
            )
            self._notify(
                "Exit Not Recorded",
                f"{decision.symbol} sold (tx {signature}) but the position could not be updated: {exc}",
                NotificationSeverity.ERROR,
                decision,
                kind="persist_failed",
            )

    # Failure handling

    def _handle_stage_failure(self, decision: ExitDecision, exc: ExitPipelineError) -> None:
        decision.error = exc.as_error()
        decision.executed = False
        decision.failure_category = exc.category

        if isinstance(exc, SignerUnavailable):
            decision.pending_signature = True
            self._record("pending_signature", decision)
            self._notify("Wallet Not Connected", str(exc), NotificationSeverity.WARNING,
                         decision, kind="signer_unavailable")
        elif isinstance(exc, PositionNotFound):
            # Already resolved elsewhere: drop silently
            decision.pending_signature = False
            decision.quote = None
            self._record("discarded", decision)
            logger.info(f"[AutoExit] {exc}; discarding exit for {decision.symbol}")
        elif isinstance(exc, NoBalance):
            decision.pending_signature = False
            self._record("no_balance", decision)
            self._notify("Nothing To Sell", f"{decision.symbol}: {exc}", NotificationSeverity.WARNING,
                         decision, kind="no_balance")
        elif isinstance(exc, BroadcastUnknown):
            # Held by the monitor until resolved; never resent
            decision.pending_signature = False
            self._record("broadcast_unknown", decision)
            self._notify(
                "Exit Broadcast Unknown",
                f"{decision.symbol}: wallet did not answer after signing; check the wallet before selling again ({exc})",
                NotificationSeverity.ERROR,
                decision,
                kind="broadcast_unknown",
            )
        elif isinstance(exc, SignerRejected):
            decision.pending_signature = True
            self._record("rejected", decision)
            self._notify("Transaction Rejected", f"{decision.symbol}: {exc}", NotificationSeverity.ERROR,
                         decision, kind="exit_failed")
        else:
            decision.pending_signature = False
            if isinstance(exc, BuildFailed):
                outcome, title = "build_failed", "Swap Build Failed"
            elif isinstance(exc, QuoteUnavailable):
                outcome, title = "quote_failed", "Exit Failed"
            else:
                outcome, title = "error", "Exit Failed"
            self._record(outcome, decision)
            self._notify(title, str(exc), NotificationSeverity.ERROR, decision, kind="exit_failed")

        logger.warning(f"[AutoExit] {decision.symbol} exit halted: {decision.error}")

    def _notify(self, title: str, message: str, severity: NotificationSeverity,
                decision: ExitDecision, kind: str) -> None:
        self.notifier.notify(Notification(
            title=title,
            message=message,
            severity=severity,
            metadata={
                "kind": kind,
                "position_id": decision.position_id,
                "symbol": decision.symbol,
                "action": decision.action.value,
                "profit_loss_percent": round(decision.profit_loss_percent, 4),
                "tx_id": decision.tx_id,
                "category": decision.failure_category,
            },
        ))

    def _record(self, outcome: str, decision: ExitDecision) -> None:
        if self.metrics is not None:
            self.metrics.record_exit(decision.action.value, outcome)

    @staticmethod
    def _outcome(decision: ExitDecision) -> ExitOutcome:
        return ExitOutcome(executed=decision.executed, tx_id=decision.tx_id, error=decision.error)
