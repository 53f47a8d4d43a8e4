"""
autoexit-monitor Core: Swap Provider (Jupiter aggregator)

Requests sell quotes and unsigned swap transactions. The provider never
signs; the payload is handed to a Signer.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.exceptions import ProviderError
from core.http_client import request_json
from core.models import SwapQuote

logger = logging.getLogger(__name__)

SOL_MINT = "So11111111111111111111111111111111111111112"
JUPITER_BASE = "https://lite-api.jup.ag/swap/v1"


@dataclass
class FeeOptions:
    """Fee/priority settings favouring fast inclusion"""
    wrap_and_unwrap_sol: bool = True
    dynamic_compute_unit_limit: bool = True
    dynamic_slippage: bool = True
    priority_level: str = "high"
    max_priority_lamports: int = 5_000_000

    def to_body(self) -> Dict[str, Any]:
        return {
            "wrapAndUnwrapSol": self.wrap_and_unwrap_sol,
            "dynamicComputeUnitLimit": self.dynamic_compute_unit_limit,
            "dynamicSlippage": self.dynamic_slippage,
            "prioritizationFeeLamports": {
                "priorityLevelWithMaxLamports": {
                    "maxLamports": int(self.max_priority_lamports),
                    "priorityLevel": self.priority_level,
                },
            },
        }


@dataclass
class UnsignedSwap:
    """Base64-encoded unsigned transaction returned by the builder"""
    transaction: str
    last_valid_block_height: Optional[int] = None
    raw: Optional[Dict[str, Any]] = None


class JupiterSwapClient:
    """
    Jupiter quote + swap-build client.

    Supports:
    - quote(input_mint, output_mint, amount, slippage_bps)
    - build_swap(quote, signer_address, fee_options)
    """

    def __init__(self, base_url: str = JUPITER_BASE, timeout: float = 8.0, max_retries: int = 2):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        logger.info(f"Initialized JupiterSwapClient ({self.base_url})")

    def quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> SwapQuote:
        """
        Request a priced route for selling `amount` base units of input_mint.

        Raises:
            ProviderError: when no route exists or the provider fails
        """
        if amount <= 0:
            raise ProviderError("jupiter_quote", f"invalid amount {amount}")

        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(int(amount)),
            "slippageBps": str(int(slippage_bps)),
        }
        try:
            data = request_json(
                "GET",
                f"{self.base_url}/quote",
                source="jupiter_quote",
                params=params,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        except ProviderError as exc:
            if exc.status_code in (400, 404):
                raise ProviderError(
                    "jupiter_quote",
                    "No Jupiter route available - token may not be indexed or has no liquidity",
                    status_code=exc.status_code,
                    original=exc,
                ) from exc
            raise

        if not data or not isinstance(data, dict) or data.get("error"):
            reason = data.get("error") if isinstance(data, dict) else None
            raise ProviderError("jupiter_quote", reason or "No route available for sell")

        try:
            out_amount = int(data.get("outAmount", 0))
            in_amount = int(data.get("inAmount", amount))
        except (TypeError, ValueError) as exc:
            raise ProviderError("jupiter_quote", f"malformed quote amounts: {exc}") from exc

        logger.info(f"Jupiter quote received - in: {in_amount}, out: {out_amount} lamports")
        return SwapQuote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=in_amount,
            out_amount=out_amount,
            slippage_bps=int(slippage_bps),
            raw=data,
        )

    def build_swap(self, quote: SwapQuote, signer_address: str,
                   fee_options: Optional[FeeOptions] = None) -> UnsignedSwap:
        """
        Request an unsigned transaction for a previously fetched quote.

        Raises:
            ProviderError: when the build fails or returns no transaction
        """
        body = {
            "quoteResponse": quote.raw,
            "userPublicKey": signer_address,
            **(fee_options or FeeOptions()).to_body(),
        }
        data = request_json(
            "POST",
            f"{self.base_url}/swap",
            source="jupiter_swap",
            body=body,
            timeout=self.timeout,
            max_retries=self.max_retries,
        )
        if not isinstance(data, dict) or not data.get("swapTransaction"):
            raise ProviderError("jupiter_swap", "Jupiter did not return transaction data")

        return UnsignedSwap(
            transaction=data["swapTransaction"],
            last_valid_block_height=data.get("lastValidBlockHeight"),
            raw=data,
        )
