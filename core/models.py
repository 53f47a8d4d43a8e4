"""
autoexit-monitor Core: Data Model

Position records, exit decisions and per-pass summaries shared by the
evaluator, the exit pipeline and the monitor.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ExitAction(str, Enum):
    HOLD = "hold"
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


# Fields a store may patch on a position record
PATCHABLE_FIELDS = frozenset({
    "status",
    "exit_reason",
    "exit_price",
    "exit_tx_id",
    "closed_at",
    "profit_loss_percent",
})


@dataclass
class Position:
    """A user's trade against a single token"""
    id: str
    token_address: str
    amount: float
    entry_price: float
    user_id: Optional[str] = None
    token_symbol: Optional[str] = None
    token_name: Optional[str] = None
    current_price: Optional[float] = None
    decimals: int = 9
    take_profit_pct: Optional[float] = None
    stop_loss_pct: Optional[float] = None
    status: str = PositionStatus.OPEN.value
    exit_reason: Optional[str] = None
    exit_price: Optional[float] = None
    exit_tx_id: Optional[str] = None
    closed_at: Optional[str] = None
    profit_loss_percent: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN.value

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Position":
        """Build a Position from a backend row (positions table shape)."""

        def _float(key: str, default: Optional[float] = None) -> Optional[float]:
            value = record.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except (TypeError, ValueError):
                return default

        return cls(
            id=str(record["id"]),
            token_address=str(record.get("token_address") or ""),
            amount=_float("amount", 0.0),
            entry_price=_float("entry_price", 0.0),
            user_id=record.get("user_id"),
            token_symbol=record.get("token_symbol"),
            token_name=record.get("token_name"),
            current_price=_float("current_price"),
            decimals=9 if record.get("decimals") is None else int(record["decimals"]),
            take_profit_pct=_float("profit_take_percent"),
            stop_loss_pct=_float("stop_loss_percent"),
            status=record.get("status") or PositionStatus.OPEN.value,
            exit_reason=record.get("exit_reason"),
            exit_price=_float("exit_price"),
            exit_tx_id=record.get("exit_tx_id"),
            closed_at=record.get("closed_at"),
            profit_loss_percent=_float("profit_loss_percent"),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "token_address": self.token_address,
            "token_symbol": self.token_symbol,
            "token_name": self.token_name,
            "amount": self.amount,
            "decimals": self.decimals,
            "entry_price": self.entry_price,
            "current_price": self.current_price,
            "profit_take_percent": self.take_profit_pct,
            "stop_loss_percent": self.stop_loss_pct,
            "status": self.status,
            "exit_reason": self.exit_reason,
            "exit_price": self.exit_price,
            "exit_tx_id": self.exit_tx_id,
            "closed_at": self.closed_at,
            "profit_loss_percent": self.profit_loss_percent,
        }


@dataclass
class ExitThresholds:
    take_profit_pct: float = 50.0
    stop_loss_pct: float = 20.0
    take_profit_enabled: bool = True
    stop_loss_enabled: bool = True


@dataclass
class SwapQuote:
    """Priced conversion offer returned by the quote provider"""
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    slippage_bps: int
    raw: Dict[str, Any] = field(default_factory=dict)
    fetched_at: datetime = None

    def __post_init__(self):
        if self.fetched_at is None:
            self.fetched_at = datetime.now(timezone.utc)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.fetched_at).total_seconds()


@dataclass
class ExitDecision:
    """
    Per-position outcome of one evaluation pass.

    Created by the evaluator and mutated in place as pipeline stages complete.
    `error` carries a machine-parseable marker prefix (e.g. "PENDING_SIGNATURE: ...").
    """
    position_id: str
    symbol: str
    action: ExitAction
    current_price: float
    profit_loss_percent: float
    executed: bool = False
    tx_id: Optional[str] = None
    error: Optional[str] = None
    pending_signature: bool = False
    unconfirmed: bool = False
    failure_category: Optional[str] = None
    quote: Optional[SwapQuote] = None

    @property
    def triggered(self) -> bool:
        return self.action != ExitAction.HOLD

    def has_marker(self, marker: str) -> bool:
        return bool(self.error) and self.error.startswith(f"{marker}:")

    def mark(self, marker: str, message: str) -> None:
        self.error = f"{marker}: {message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "positionId": self.position_id,
            "symbol": self.symbol,
            "action": self.action.value,
            "currentPrice": self.current_price,
            "profitLossPercent": self.profit_loss_percent,
            "executed": self.executed,
            "txId": self.tx_id,
            "error": self.error,
            "pendingSignature": self.pending_signature,
            "unconfirmed": self.unconfirmed,
            "failureCategory": self.failure_category,
        }


@dataclass
class ExitOutcome:
    executed: bool
    tx_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ExitSummary:
    total: int = 0
    holding: int = 0
    take_profit_triggered: int = 0
    stop_loss_triggered: int = 0
    executed: int = 0

    @classmethod
    def from_decisions(cls, decisions: List[ExitDecision]) -> "ExitSummary":
        return cls(
            total=len(decisions),
            holding=sum(1 for d in decisions if d.action == ExitAction.HOLD),
            take_profit_triggered=sum(1 for d in decisions if d.action == ExitAction.TAKE_PROFIT),
            stop_loss_triggered=sum(1 for d in decisions if d.action == ExitAction.STOP_LOSS),
            executed=sum(1 for d in decisions if d.executed),
        )


@dataclass
class PassResult:
    """Result of one monitor pass"""
    results: List[ExitDecision]
    summary: ExitSummary
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)
