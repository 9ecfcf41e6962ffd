from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable
from decimal import Decimal
from typing import Any, Generic, TypeVar

from app.providers.base import ProviderError
from app.providers.payment_provider import PaymentProvider
from app.services.errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

NATIVE_SYMBOLS = {
    1: "ETH",
    10: "ETH",
    56: "BNB",
    137: "MATIC",
    8453: "ETH",
    42161: "ETH",
    43114: "AVAX",
}

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Small thread-safe TTL map. The clock is injectable for tests."""

    def __init__(self, ttl_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._items: dict[str, tuple[float, V]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> V | None:
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._items[key]
                return None
            return value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._items[key] = (self._clock(), value)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


class BalanceService:
    def __init__(self, provider: PaymentProvider, cache: TTLCache[dict[str, Any]] | None = None) -> None:
        self.provider = provider
        self.cache = cache if cache is not None else TTLCache()

    def get_balance(self, address: str, chain_id: int, token_address: str | None = None) -> dict[str, Any]:
        if not address:
            raise ValidationError("Missing wallet address")
        if not chain_id:
            raise ValidationError("Missing chain ID")
        if not _ADDRESS_RE.match(address):
            raise ValidationError("Invalid wallet address format")
        if token_address and not _ADDRESS_RE.match(token_address):
            raise ValidationError("Invalid token address format")

        key = f"{address.lower()}-{chain_id}-{(token_address or 'native').lower()}"
        cached = self.cache.get(key)
        if cached is not None:
            return {**cached, "cached": True}

        try:
            balance = self._fetch(address, chain_id, token_address)
        except ProviderError as exc:
            logger.error("Balance fetch failed for %s on chain %s: %s", address, chain_id, exc)
            raise ExternalServiceError(str(exc)) from exc

        self.cache.set(key, balance)
        return {**balance, "cached": False}

    def _fetch(self, address: str, chain_id: int, token_address: str | None) -> dict[str, Any]:
        if token_address:
            result = self.provider.token_balance(chain_id, token_address, address)
            if result is None:
                return {"balance": "0", "symbol": "UNKNOWN", "decimals": 18}
            return {
                "balance": str(result.get("displayValue") or "0"),
                "symbol": result.get("symbol") or "UNKNOWN",
                "decimals": int(result.get("decimals") or 18),
            }

        wei = self.provider.native_balance_wei(chain_id, address)
        ether = (Decimal(wei) / Decimal(10**18)).quantize(Decimal("0.000001"))
        return {
            "balance": f"{ether:f}",
            "symbol": NATIVE_SYMBOLS.get(chain_id, "ETH"),
            "decimals": 18,
        }
