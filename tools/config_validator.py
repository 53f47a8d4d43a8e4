"""
Configuration Validation Module

Validates app.yaml against Pydantic schemas.
Ensures config files are correct before the monitor starts.

Usage:
    from tools.config_validator import validate_all_configs

    errors = validate_all_configs("config")
    if errors:
        for error in errors:
            print(f"ERROR: {error}")
        sys.exit(1)
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


# ===== App Schema =====
class AppSection(BaseModel):
    mode: str = Field(default="DRY_RUN", description="DRY_RUN | PAPER | LIVE")

    @field_validator('mode')
    @classmethod
    def validate_mode(cls, v: str) -> str:
        normalized = (v or "").upper()
        if normalized not in {"DRY_RUN", "PAPER", "LIVE"}:
            raise ValueError(f"mode must be DRY_RUN, PAPER or LIVE, got {v!r}")
        return normalized


class ThresholdsConfig(BaseModel):
    take_profit_pct: float = Field(default=50.0, gt=0, description="Take profit %")
    stop_loss_pct: float = Field(default=20.0, gt=0, le=100, description="Stop loss %")
    take_profit_enabled: bool = True
    stop_loss_enabled: bool = True


class MonitorConfig(BaseModel):
    interval_ms: int = Field(default=30000, ge=1000, description="Milliseconds between passes")
    execute_exits: bool = True
    position_ids: List[str] = Field(default_factory=list, description="Restrict monitoring to these ids")
    thresholds: ThresholdsConfig = Field(default_factory=ThresholdsConfig)


class FeeConfig(BaseModel):
    priority_level: str = Field(default="high")
    max_priority_lamports: int = Field(default=5_000_000, ge=0)
    wrap_and_unwrap_sol: bool = True
    dynamic_compute_unit_limit: bool = True
    dynamic_slippage: bool = True

    @field_validator('priority_level')
    @classmethod
    def validate_priority(cls, v: str) -> str:
        if v not in {"medium", "high", "veryHigh"}:
            raise ValueError(f"priority_level must be medium, high or veryHigh, got {v!r}")
        return v


class SwapConfig(BaseModel):
    base_url: str = "https://lite-api.jup.ag/swap/v1"
    base_mint: str = "So11111111111111111111111111111111111111112"
    slippage_bps: int = Field(default=1500, gt=0, le=5000, description="Sell slippage tolerance (bps)")
    quote_ttl_seconds: float = Field(default=20.0, ge=0)
    timeout_seconds: float = Field(default=8.0, gt=0)
    fees: FeeConfig = Field(default_factory=FeeConfig)


class StoreConfig(BaseModel):
    backend: str = Field(default="json", description="json | rest")
    json_path: str = "data/positions.json"
    url: Optional[str] = None
    api_key_env: str = "STORE_API_KEY"
    table: str = "positions"
    timeout_seconds: float = Field(default=10.0, gt=0)

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in {"json", "rest"}:
            raise ValueError(f"backend must be json or rest, got {v!r}")
        return v


class SignerConfig(BaseModel):
    bridge_url: str = "http://127.0.0.1:8787"
    token_env: str = "WALLET_BRIDGE_TOKEN"
    timeout_seconds: float = Field(default=60.0, gt=0)


class ConfirmationConfig(BaseModel):
    functions_url: Optional[str] = None
    timeout_seconds: float = Field(default=30.0, gt=0)


class PricesConfig(BaseModel):
    base_url: str = "https://api.dexscreener.com/latest/dex/tokens"
    chain_id: str = "solana"
    timeout_seconds: float = Field(default=5.0, gt=0)


class BalanceCheckConfig(BaseModel):
    enabled: bool = False
    rpc_url: str = "https://api.mainnet-beta.solana.com"


class SessionConfig(BaseModel):
    user_id_env: str = "AUTOEXIT_USER_ID"
    token_env: str = "AUTOEXIT_ACCESS_TOKEN"


class NotificationsConfig(BaseModel):
    webhook_url: Optional[str] = None
    webhook_env: str = "NOTIFY_WEBHOOK_URL"
    min_severity: str = "warning"
    dry_run: bool = False
    timeout_seconds: float = Field(default=5.0, gt=0)
    dedupe_seconds: float = Field(default=60.0, ge=0)
    history_size: int = Field(default=200, gt=0)

    @field_validator('min_severity')
    @classmethod
    def validate_severity(cls, v: str) -> str:
        if v.lower() not in {"info", "success", "warning", "error"}:
            raise ValueError(f"min_severity must be info, success, warning or error, got {v!r}")
        return v.lower()


class MetricsConfig(BaseModel):
    enabled: bool = False
    port: int = Field(default=9110, gt=0, lt=65536)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = "logs/autoexit.log"


class AppSchema(BaseModel):
    """Complete app configuration schema"""
    app: AppSection = Field(default_factory=AppSection)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    swap: SwapConfig = Field(default_factory=SwapConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    signer: SignerConfig = Field(default_factory=SignerConfig)
    confirmation: ConfirmationConfig = Field(default_factory=ConfirmationConfig)
    prices: PricesConfig = Field(default_factory=PricesConfig)
    balance_check: BalanceCheckConfig = Field(default_factory=BalanceCheckConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ===== Validation Functions =====
def _format_yaml_error(file_path: Path, error: yaml.YAMLError) -> str:
    """Return enriched message with line/column context for YAML errors."""
    mark = getattr(error, "problem_mark", None)
    if mark is None:
        return f"Malformed YAML in {file_path}: {error}"
    problem = getattr(error, "problem", str(error))
    return f"Malformed YAML in {file_path}: line {mark.line + 1}, column {mark.column + 1}: {problem}"


def load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """
    Load YAML file and return as dict.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is malformed
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, 'r', encoding="utf-8") as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(_format_yaml_error(file_path, e))


def validate_app(config_dir: Path) -> List[str]:
    errors = []
    app_path = config_dir / "app.yaml"

    try:
        config = load_yaml_file(app_path)
        AppSchema(**config)
        logger.info("✅ app.yaml validation passed")
    except FileNotFoundError as e:
        errors.append(f"app.yaml: {e}")
    except yaml.YAMLError as e:
        errors.append(f"app.yaml: Invalid YAML - {e}")
    except ValidationError as e:
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error['loc'])
            errors.append(f"app.yaml: {field}: {error['msg']}")
    except TypeError as e:
        errors.append(f"app.yaml: top level must be a mapping - {e}")

    return errors


def validate_sanity_checks(config: AppSchema) -> List[str]:
    """Logical consistency checks beyond field types."""
    errors = []
    if config.app.mode == "LIVE":
        if config.store.backend == "rest" and not config.store.url:
            errors.append("store.url is required when store.backend is 'rest'")
        if not config.confirmation.functions_url:
            errors.append("confirmation.functions_url is required in LIVE mode")
    thresholds = config.monitor.thresholds
    if not thresholds.take_profit_enabled and not thresholds.stop_loss_enabled:
        logger.warning("Both take-profit and stop-loss are disabled; monitor will only hold")
    return errors


def validate_all_configs(config_dir: str = "config") -> List[str]:
    """
    Validate all configuration files.

    Performs:
    1. Schema validation (Pydantic type checks)
    2. Sanity checks (logical consistency)

    Returns:
        List of all error messages (empty if all valid)
    """
    config_path = Path(config_dir)
    all_errors = validate_app(config_path)

    if not all_errors:
        config = AppSchema(**load_yaml_file(config_path / "app.yaml"))
        all_errors.extend(validate_sanity_checks(config))

    if not all_errors:
        logger.info("✅ All config files validated successfully")
    else:
        logger.error(f"❌ {len(all_errors)} validation error(s) found")

    return all_errors


if __name__ == "__main__":
    """Run validation from command line"""
    import sys

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    config_dir = sys.argv[1] if len(sys.argv) > 1 else "config"
    errors = validate_all_configs(config_dir)

    if errors:
        print("\n❌ Configuration Validation Failed:\n")
        for error in errors:
            print(f"  • {error}")
        print()
        sys.exit(1)
    else:
        print("\n✅ All configuration files are valid!\n")
