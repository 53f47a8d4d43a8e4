"""
Token metadata helpers.

Placeholder detection, display-safe symbols, and a pure merge of token
symbol/name from scanner pool records into position records.
"""

import re
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional

PLACEHOLDER_RE = re.compile(r"^(unknown|unknown token|token|\?\?\?|n/a)$", re.IGNORECASE)


@dataclass(frozen=True)
class PoolMetadata:
    address: str
    symbol: Optional[str]
    name: Optional[str]


def is_placeholder_token_text(value: Optional[str]) -> bool:
    if not value:
        return True
    text = value.strip()
    if not text:
        return True
    return bool(PLACEHOLDER_RE.match(text))


def short_address(address: Optional[str]) -> str:
    if not address or len(address) < 10:
        return "TOKEN"
    return f"{address[:4]}…{address[-4:]}"


def safe_token_symbol(symbol: Optional[str], address: Optional[str]) -> str:
    if not is_placeholder_token_text(symbol):
        return symbol.strip()
    return short_address(address)


def reconcile_positions_with_pools(positions: List, pools: Iterable[PoolMetadata]) -> List:
    """
    Fill placeholder token_symbol/token_name on positions from matching pools.

    Only placeholder fields are overwritten, and only with real values.
    Positions are never mutated; updated copies are returned in input order.
    """
    if not positions:
        return positions

    pool_map: Dict[str, PoolMetadata] = {}
    for pool in pools:
        if not is_placeholder_token_text(pool.symbol) or not is_placeholder_token_text(pool.name):
            pool_map[pool.address] = pool

    if not pool_map:
        return positions

    reconciled = []
    for position in positions:
        pool = pool_map.get(position.token_address)
        if pool is None:
            reconciled.append(position)
            continue

        needs_symbol = is_placeholder_token_text(position.token_symbol) and not is_placeholder_token_text(pool.symbol)
        needs_name = is_placeholder_token_text(position.token_name) and not is_placeholder_token_text(pool.name)
        if not needs_symbol and not needs_name:
            reconciled.append(position)
            continue

        reconciled.append(replace(
            position,
            token_symbol=pool.symbol if needs_symbol else position.token_symbol,
            token_name=pool.name if needs_name else position.token_name,
        ))
    return reconciled
