"""
autoexit-monitor Core: Price Feed

Current USD prices from DexScreener, choosing the deepest Solana pair per
token. Tokens without a usable price are omitted; the evaluator then falls
back to the last known price on the position.
"""

import logging
from typing import Dict, Iterable, List

from core.exceptions import ProviderError
from core.http_client import request_json

logger = logging.getLogger(__name__)

DEXSCREENER_BASE = "https://api.dexscreener.com/latest/dex/tokens"
MAX_TOKENS_PER_REQUEST = 30


def _chunks(items: List[str], size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class DexScreenerPriceFeed:
    def __init__(self, base_url: str = DEXSCREENER_BASE, chain_id: str = "solana",
                 timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.chain_id = chain_id
        self.timeout = timeout

    def get_prices(self, token_addresses: Iterable[str]) -> Dict[str, float]:
        unique = list(dict.fromkeys(a for a in token_addresses if a))
        prices: Dict[str, float] = {}
        for batch in _chunks(unique, MAX_TOKENS_PER_REQUEST):
            try:
                data = request_json(
                    "GET",
                    f"{self.base_url}/{','.join(batch)}",
                    source="dexscreener",
                    timeout=self.timeout,
                    max_retries=2,
                ) or {}
            except ProviderError as exc:
                logger.warning(f"DexScreener price fetch failed for {len(batch)} tokens: {exc}")
                continue
            prices.update(self._best_prices(data.get("pairs") or [], batch))
        return prices

    def _best_prices(self, pairs: List[dict], addresses: List[str]) -> Dict[str, float]:
        wanted = set(addresses)
        best: Dict[str, tuple] = {}
        for pair in pairs:
            if pair.get("chainId") != self.chain_id:
                continue
            address = (pair.get("baseToken") or {}).get("address")
            if address not in wanted:
                continue
            try:
                price = float(pair.get("priceUsd"))
            except (TypeError, ValueError):
                continue
            if price <= 0:
                continue
            liquidity = float((pair.get("liquidity") or {}).get("usd") or 0.0)
            if address not in best or liquidity > best[address][0]:
                best[address] = (liquidity, price)
        return {address: price for address, (_, price) in best.items()}
