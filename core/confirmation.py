"""
autoexit-monitor Core: Settlement confirmation and wallet balance lookups.
"""

import logging
from typing import Optional

from core.exceptions import ProviderError
from core.http_client import request_json

logger = logging.getLogger(__name__)

SOLANA_MAINNET_RPC = "https://api.mainnet-beta.solana.com"


class ConfirmationService:
    """
    Confirms broadcast transactions via the backend `confirm-transaction`
    function.

    Returns True only when the backend reports `confirmed: true`.

    Raises:
        ProviderError: when the backend cannot be reached
    """

    def __init__(self, functions_url: str, api_key: Optional[str] = None,
                 access_token: Optional[str] = None, timeout: float = 30.0):
        self.functions_url = functions_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.timeout = timeout

    def set_access_token(self, token: Optional[str]) -> None:
        self.access_token = token

    def confirm(self, signature: str, position_id: str, action: str) -> bool:
        headers = {}
        if self.api_key:
            headers["apikey"] = self.api_key
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        data = request_json(
            "POST",
            f"{self.functions_url}/confirm-transaction",
            source="confirm_transaction",
            body={"signature": signature, "positionId": position_id, "action": action},
            headers=headers,
            timeout=self.timeout,
            max_retries=2,
        ) or {}
        confirmed = bool(data.get("confirmed"))
        logger.debug(f"Confirmation for {signature[:12]}...: {confirmed}")
        return confirmed


class SolanaBalanceChecker:
    """Reads SPL token balances over Solana JSON-RPC (getTokenAccountsByOwner)."""

    def __init__(self, rpc_url: str = SOLANA_MAINNET_RPC, timeout: float = 8.0):
        self.rpc_url = rpc_url
        self.timeout = timeout

    def token_balance(self, owner: str, mint: str) -> Optional[float]:
        """
        Total UI balance of `mint` held by `owner`.

        Returns None when the balance cannot be determined; callers treat
        that as "assume held".
        """
        body = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getTokenAccountsByOwner",
            "params": [owner, {"mint": mint}, {"encoding": "jsonParsed"}],
        }
        try:
            data = request_json("POST", self.rpc_url, source="solana_rpc", body=body,
                                timeout=self.timeout, max_retries=2) or {}
        except ProviderError as exc:
            logger.warning(f"Balance check failed for {mint[:8]}...: {exc}")
            return None

        if data.get("error"):
            logger.warning(f"Balance RPC error for {mint[:8]}...: {data['error']}")
            return None

        accounts = (data.get("result") or {}).get("value") or []
        total = 0.0
        for account in accounts:
            token_amount = (((account.get("account") or {}).get("data") or {})
                            .get("parsed", {}).get("info", {}).get("tokenAmount", {}))
            total += float(token_amount.get("uiAmount") or 0.0)
        return total
