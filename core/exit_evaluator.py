"""
Exit Evaluation: Take-Profit and Stop-Loss Decisions

Classifies open positions as hold / take_profit / stop_loss against
configured thresholds. `evaluate` is pure; `ExitEvaluator` adds config
defaults, per-position overrides and logging.
"""
import logging
import math
from typing import Dict, Iterable, List, Optional

from core.metadata import safe_token_symbol
from core.models import ExitAction, ExitDecision, ExitThresholds, Position

logger = logging.getLogger(__name__)


def _valid_number(value) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def profit_loss_percent(entry_price, current_price) -> Optional[float]:
    """Percent change from entry, or None when either price is unusable."""
    if not _valid_number(entry_price) or not _valid_number(current_price):
        return None
    entry = float(entry_price)
    current = float(current_price)
    if entry <= 0 or current < 0:
        return None
    return ((current - entry) / entry) * 100


def evaluate(position: Position, current_price, thresholds: ExitThresholds) -> ExitDecision:
    """
    Decide whether a position should be held or exited.

    Take-profit is checked first, so degenerate thresholds that fire both
    ways resolve to take_profit. Invalid numeric input yields hold at 0%.
    """
    symbol = safe_token_symbol(position.token_symbol, position.token_address)
    pnl_pct = profit_loss_percent(position.entry_price, current_price)

    if pnl_pct is None:
        price = float(current_price) if _valid_number(current_price) else 0.0
        return ExitDecision(
            position_id=position.id,
            symbol=symbol,
            action=ExitAction.HOLD,
            current_price=price,
            profit_loss_percent=0.0,
        )

    action = ExitAction.HOLD
    if thresholds.take_profit_enabled and _valid_number(thresholds.take_profit_pct):
        if pnl_pct >= float(thresholds.take_profit_pct):
            action = ExitAction.TAKE_PROFIT

    if action == ExitAction.HOLD and thresholds.stop_loss_enabled and _valid_number(thresholds.stop_loss_pct):
        if pnl_pct <= -abs(float(thresholds.stop_loss_pct)):
            action = ExitAction.STOP_LOSS

    return ExitDecision(
        position_id=position.id,
        symbol=symbol,
        action=action,
        current_price=float(current_price),
        profit_loss_percent=pnl_pct,
    )


class ExitEvaluator:
    """
    Evaluates positions against exit thresholds.

    Responsibilities:
    - Resolve thresholds (config defaults, overridden per position)
    - Classify every position in store order
    - Log triggered exits
    """

    def __init__(self, defaults: Optional[ExitThresholds] = None):
        self.defaults = defaults or ExitThresholds()
        logger.info(
            f"ExitEvaluator initialized: take_profit={self.defaults.take_profit_pct}% "
            f"(enabled={self.defaults.take_profit_enabled}), "
            f"stop_loss={self.defaults.stop_loss_pct}% (enabled={self.defaults.stop_loss_enabled})"
        )

    @classmethod
    def from_config(cls, monitor_config: Optional[Dict]) -> "ExitEvaluator":
        cfg = (monitor_config or {}).get("thresholds", {}) or {}
        defaults = ExitThresholds(
            take_profit_pct=float(cfg.get("take_profit_pct", 50.0)),
            stop_loss_pct=float(cfg.get("stop_loss_pct", 20.0)),
            take_profit_enabled=bool(cfg.get("take_profit_enabled", True)),
            stop_loss_enabled=bool(cfg.get("stop_loss_enabled", True)),
        )
        return cls(defaults)

    def thresholds_for(self, position: Position) -> ExitThresholds:
        return ExitThresholds(
            take_profit_pct=(position.take_profit_pct
                             if position.take_profit_pct is not None
                             else self.defaults.take_profit_pct),
            stop_loss_pct=(position.stop_loss_pct
                           if position.stop_loss_pct is not None
                           else self.defaults.stop_loss_pct),
            take_profit_enabled=self.defaults.take_profit_enabled,
            stop_loss_enabled=self.defaults.stop_loss_enabled,
        )

    def evaluate_positions(
        self,
        positions: Iterable[Position],
        current_prices: Dict[str, float],
    ) -> List[ExitDecision]:
        """
        Evaluate all positions, preserving input order.

        Args:
            positions: Open positions as returned by the store
            current_prices: token_address -> latest price

        Returns:
            One ExitDecision per position
        """
        decisions = []
        for position in positions:
            price = current_prices.get(position.token_address)
            if price is None:
                price = position.current_price if position.current_price else position.entry_price
                logger.debug(f"Using last known price for {position.token_symbol or position.id}: {price}")

            decision = evaluate(position, price, self.thresholds_for(position))
            decisions.append(decision)

            if decision.triggered:
                logger.info(
                    f"EXIT SIGNAL: {decision.symbol} {decision.action.value.upper()} - "
                    f"PnL: {decision.profit_loss_percent:+.2f}%, "
                    f"Price: ${position.entry_price:.6f} → ${decision.current_price:.6f}"
                )

        triggered = sum(1 for d in decisions if d.triggered)
        if triggered:
            logger.info(f"{triggered} of {len(decisions)} positions met exit criteria")
        else:
            logger.debug("No positions met exit criteria")
        return decisions
