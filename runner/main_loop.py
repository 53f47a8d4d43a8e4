"""
autoexit-monitor Runner: Main Loop

Wires configuration into the exit monitor and runs it.

Flow:
1. Validate config/app.yaml
2. Configure logging
3. Build store, swap, signer, confirmation, price feed and session clients
4. Build evaluator, pipeline and monitor
5. Run one pass (--once) or keep the monitor timer alive until signalled
"""

import logging
import os
import signal
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from core.confirmation import ConfirmationService, SolanaBalanceChecker
from core.exit_evaluator import ExitEvaluator
from core.exit_monitor import DEFAULT_INTERVAL_MS, ExitMonitor
from core.exit_pipeline import ExitPipeline
from core.models import PassResult
from core.position_store import create_position_store
from core.price_feed import DexScreenerPriceFeed
from core.session import EnvSessionProvider
from core.signer import RemoteWalletSigner
from core.swap_provider import SOL_MINT, FeeOptions, JupiterSwapClient
from infra.metrics import MetricsRecorder
from infra.notifications import NotificationCenter

logger = logging.getLogger(__name__)


class ExitRunner:
    """
    Main runner orchestrator.

    Responsibilities:
    - Load and validate config
    - Own the notification sink and metrics exporter lifecycle
    - Build the exit monitor from config
    - Translate process signals into a clean monitor stop
    """

    def __init__(self, config_dir: str = "config", execute_exits: Optional[bool] = None):
        self.config_dir = Path(config_dir)
        from tools.config_validator import validate_all_configs
        validation_errors = validate_all_configs(config_dir)
        if validation_errors:
            logger.error("=" * 80)
            logger.error("CONFIGURATION VALIDATION FAILED")
            logger.error("=" * 80)
            for idx, error in enumerate(validation_errors, start=1):
                logger.error(f"{idx:>2}. {error}")
            logger.error("=" * 80)
            raise ValueError(f"Invalid configuration: {len(validation_errors)} error(s) found")

        self.app_config = self._load_yaml("app.yaml")
        self.mode = str(self.app_config.get("app", {}).get("mode", "DRY_RUN")).upper()

        monitor_cfg = self.app_config.get("monitor", {}) or {}
        self.execute_exits = (
            bool(monitor_cfg.get("execute_exits", True)) if execute_exits is None else execute_exits
        )
        self.interval_ms = int(monitor_cfg.get("interval_ms", DEFAULT_INTERVAL_MS))

        self._setup_logging(self.app_config.get("logging", {}) or {})
        logger.info(f"Starting autoexit-monitor in mode={self.mode}, execute_exits={self.execute_exits}")

        metrics_cfg = self.app_config.get("metrics", {}) or {}
        self.metrics = MetricsRecorder(
            enabled=bool(metrics_cfg.get("enabled", False)),
            port=int(metrics_cfg.get("port", 9110)),
        )
        self.metrics.start()

        self.notifier = NotificationCenter.from_config(self.app_config.get("notifications"))
        self.notifier.start()

        self.monitor = self._build_monitor()

        self._stopped = threading.Event()
        signal.signal(signal.SIGINT, self._handle_stop)
        signal.signal(signal.SIGTERM, self._handle_stop)

        logger.info(f"Initialized ExitRunner in {self.mode} mode")

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        path = self.config_dir / filename
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    @staticmethod
    def _setup_logging(log_cfg: Dict[str, Any]) -> None:
        log_file = log_cfg.get("file", "logs/autoexit.log")
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(
            level=getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            handlers=[logging.FileHandler(log_file), logging.StreamHandler()],
        )

    def _build_monitor(self) -> ExitMonitor:
        cfg = self.app_config
        session_cfg = cfg.get("session", {}) or {}
        session_provider = EnvSessionProvider(
            user_id_env=session_cfg.get("user_id_env", "AUTOEXIT_USER_ID"),
            token_env=session_cfg.get("token_env", "AUTOEXIT_ACCESS_TOKEN"),
        )
        session = session_provider.get_session()
        access_token = session.access_token if session else None

        store_cfg = cfg.get("store", {}) or {}
        store = create_position_store(store_cfg, access_token=access_token)

        swap_cfg = cfg.get("swap", {}) or {}
        fees_cfg = swap_cfg.get("fees", {}) or {}
        swap_client = JupiterSwapClient(
            base_url=swap_cfg.get("base_url", "https://lite-api.jup.ag/swap/v1"),
            timeout=float(swap_cfg.get("timeout_seconds", 8.0)),
        )
        fee_options = FeeOptions(
            wrap_and_unwrap_sol=bool(fees_cfg.get("wrap_and_unwrap_sol", True)),
            dynamic_compute_unit_limit=bool(fees_cfg.get("dynamic_compute_unit_limit", True)),
            dynamic_slippage=bool(fees_cfg.get("dynamic_slippage", True)),
            priority_level=fees_cfg.get("priority_level", "high"),
            max_priority_lamports=int(fees_cfg.get("max_priority_lamports", 5_000_000)),
        )

        signer_cfg = cfg.get("signer", {}) or {}
        signer = RemoteWalletSigner(
            bridge_url=signer_cfg.get("bridge_url", "http://127.0.0.1:8787"),
            auth_token=os.getenv(signer_cfg.get("token_env", "WALLET_BRIDGE_TOKEN")) or None,
            timeout=float(signer_cfg.get("timeout_seconds", 60.0)),
        )

        confirm_cfg = cfg.get("confirmation", {}) or {}
        confirmation = ConfirmationService(
            functions_url=os.path.expandvars(confirm_cfg.get("functions_url") or ""),
            api_key=os.getenv(store_cfg.get("api_key_env", "STORE_API_KEY")) or None,
            access_token=access_token,
            timeout=float(confirm_cfg.get("timeout_seconds", 30.0)),
        )

        balance_cfg = cfg.get("balance_check", {}) or {}
        balance_checker = None
        if balance_cfg.get("enabled", False):
            balance_checker = SolanaBalanceChecker(rpc_url=balance_cfg.get("rpc_url"))

        prices_cfg = cfg.get("prices", {}) or {}
        price_feed = DexScreenerPriceFeed(
            base_url=prices_cfg.get("base_url", "https://api.dexscreener.com/latest/dex/tokens"),
            chain_id=prices_cfg.get("chain_id", "solana"),
            timeout=float(prices_cfg.get("timeout_seconds", 5.0)),
        )

        monitor_cfg = cfg.get("monitor", {}) or {}
        evaluator = ExitEvaluator.from_config(monitor_cfg)

        pipeline = ExitPipeline(
            store=store,
            swap_client=swap_client,
            signer=signer,
            confirmation=confirmation,
            notifier=self.notifier,
            base_mint=swap_cfg.get("base_mint", SOL_MINT),
            slippage_bps=int(swap_cfg.get("slippage_bps", 1500)),
            fee_options=fee_options,
            quote_ttl_seconds=float(swap_cfg.get("quote_ttl_seconds", 20.0)),
            balance_checker=balance_checker,
            metrics=self.metrics,
        )

        return ExitMonitor(
            store=store,
            session_provider=session_provider,
            price_feed=price_feed,
            evaluator=evaluator,
            pipeline=pipeline,
            signer=signer,
            notifier=self.notifier,
            mode=self.mode,
            position_ids=monitor_cfg.get("position_ids") or None,
            execute_exits=self.execute_exits,
            metrics=self.metrics,
        )

    def _handle_stop(self, *_):
        logger.warning("=" * 80)
        logger.warning("SHUTDOWN SIGNAL RECEIVED - stopping auto-exit monitor")
        logger.warning("=" * 80)
        self.shutdown()

    def shutdown(self) -> None:
        self.monitor.stop()
        self.notifier.close()
        self._stopped.set()

    def run_once(self) -> Optional[PassResult]:
        """Run a single pass and return its result."""
        result = self.monitor.run_pass_now(execute_exits=self.execute_exits)
        if result is not None:
            for decision in result.results:
                if decision.triggered:
                    logger.info(f"  {decision.symbol}: {decision.to_dict()}")
        return result

    def run_forever(self, interval_ms: Optional[int] = None) -> None:
        """Start the monitor timer and block until a shutdown signal."""
        interval = interval_ms or self.interval_ms
        self.monitor.start(interval)
        try:
            while not self._stopped.wait(1.0):
                pass
        finally:
            self.shutdown()
            logger.info("Auto-exit monitor stopped")


def main():
    """Entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="autoexit-monitor: take-profit / stop-loss exits")
    parser.add_argument("--once", action="store_true", help="Run one pass and exit")
    parser.add_argument("--interval", type=int, default=None,
                        help=f"Milliseconds between passes (default: config or {DEFAULT_INTERVAL_MS})")
    parser.add_argument("--config-dir", default="config", help="Config directory")
    parser.add_argument("--no-execute", action="store_true",
                        help="Evaluate only; do not execute triggered exits")

    args = parser.parse_args()

    runner = ExitRunner(config_dir=args.config_dir, execute_exits=False if args.no_execute else None)

    if args.once:
        runner.run_once()
        runner.shutdown()
    else:
        runner.run_forever(interval_ms=args.interval)


if __name__ == "__main__":
    main()
