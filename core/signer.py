"""
autoexit-monitor Core: Signer

The signing authority is an external wallet. The monitor only hands it an
unsigned payload and receives a broadcast signature or a rejection.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests

from core.exceptions import ProviderError
from core.http_client import request_json
from core.swap_provider import UnsignedSwap

logger = logging.getLogger(__name__)


@dataclass
class SignResult:
    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None
    # Request may have reached the wallet; the transaction may be on chain
    broadcast_unknown: bool = False


class Signer(ABC):
    """Holder of signing authority for the trading wallet."""

    @property
    @abstractmethod
    def address(self) -> Optional[str]:
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """True when a connected, authenticated wallet can sign right now."""

    @abstractmethod
    def sign_and_send(self, payload: UnsignedSwap) -> SignResult:
        ...


def _maybe_delivered(exc: ProviderError) -> bool:
    """True when the request may have been processed despite the error."""
    if exc.status_code is not None:
        return exc.status_code >= 500
    if isinstance(exc.original, requests.exceptions.ConnectTimeout):
        return False
    return isinstance(exc.original, (requests.exceptions.Timeout, requests.exceptions.ConnectionError))


class RemoteWalletSigner(Signer):
    """
    Signer backed by an HTTP wallet bridge.

    The bridge exposes:
    - GET  {url}/status         -> {"connected": bool, "address": str}
    - POST {url}/sign-and-send  -> {"signature": str} | {"error": str}
    """

    def __init__(self, bridge_url: str, auth_token: Optional[str] = None,
                 timeout: float = 60.0):
        self.bridge_url = bridge_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self._address: Optional[str] = None
        logger.info(f"Initialized RemoteWalletSigner ({self.bridge_url})")

    def _headers(self):
        return {"Authorization": f"Bearer {self.auth_token}"} if self.auth_token else None

    @property
    def address(self) -> Optional[str]:
        return self._address

    def is_available(self) -> bool:
        try:
            status = request_json(
                "GET",
                f"{self.bridge_url}/status",
                source="wallet_bridge",
                headers=self._headers(),
                timeout=5.0,
                max_retries=1,
            ) or {}
        except ProviderError as exc:
            logger.warning(f"Wallet bridge unreachable: {exc}")
            return False

        connected = bool(status.get("connected")) and bool(status.get("address"))
        self._address = status.get("address") if connected else None
        return connected

    def sign_and_send(self, payload: UnsignedSwap) -> SignResult:
        try:
            data = request_json(
                "POST",
                f"{self.bridge_url}/sign-and-send",
                source="wallet_bridge",
                body={"transaction": payload.transaction},
                headers=self._headers(),
                timeout=self.timeout,
                # Signing requests are never resent
                max_retries=1,
            ) or {}
        except ProviderError as exc:
            if _maybe_delivered(exc):
                logger.error(f"Wallet bridge did not answer /sign-and-send, broadcast state unknown: {exc}")
                return SignResult(success=False, error=str(exc), broadcast_unknown=True)
            return SignResult(success=False, error=str(exc))

        signature = data.get("signature")
        if not signature:
            return SignResult(success=False, error=data.get("error") or "Wallet rejected the transaction")
        return SignResult(success=True, signature=signature)
