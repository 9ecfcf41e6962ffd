from __future__ import annotations

import pytest

from app.services.balance_service import BalanceService, TTLCache
from app.services.errors import ExternalServiceError, ValidationError

WALLET = "0x" + "1" * 40
TOKEN = "0x" + "2" * 40


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class CountingProvider:
    def __init__(self, token_result=None, error=None):
        self.token_result = token_result
        self.error = error
        self.calls = 0

    def token_balance(self, chain_id, token_address, owner_address):
        self.calls += 1
        if self.error:
            raise self.error
        return self.token_result

    def native_balance_wei(self, chain_id, address):
        self.calls += 1
        if self.error:
            raise self.error
        return 1_234_567_890_123_456_789


def test_native_balance_formatting(payment_provider):
    service = BalanceService(payment_provider)
    result = service.get_balance(WALLET, 137)
    assert result == {"balance": "1.500000", "symbol": "MATIC", "decimals": 18, "cached": False}


def test_token_balance(payment_provider):
    result = BalanceService(payment_provider).get_balance(WALLET, 8453, TOKEN)
    assert result["balance"] == "12.5"
    assert result["symbol"] == "USDC"
    assert result["decimals"] == 6


def test_unknown_token_reads_as_zero():
    service = BalanceService(CountingProvider(token_result=None))
    result = service.get_balance(WALLET, 1, TOKEN)
    assert result == {"balance": "0", "symbol": "UNKNOWN", "decimals": 18, "cached": False}


def test_cache_hit_until_ttl_elapses():
    clock = Clock()
    provider = CountingProvider()
    service = BalanceService(provider, cache=TTLCache(ttl_seconds=30, clock=clock))

    first = service.get_balance(WALLET, 1)
    clock.now = 29.9
    second = service.get_balance(WALLET.upper().replace("0X", "0x"), 1)
    clock.now = 30.0
    third = service.get_balance(WALLET, 1)

    assert first["cached"] is False
    assert second["cached"] is True
    assert second["balance"] == first["balance"] == "1.234568"
    assert third["cached"] is False
    assert provider.calls == 2


def test_cache_key_includes_chain_and_token():
    provider = CountingProvider(token_result={"displayValue": "1", "symbol": "T", "decimals": 18})
    service = BalanceService(provider)

    service.get_balance(WALLET, 1)
    service.get_balance(WALLET, 10)
    service.get_balance(WALLET, 1, TOKEN)
    assert provider.calls == 3


@pytest.mark.parametrize(
    "address, chain_id, token, message",
    [
        ("", 1, None, "Missing wallet address"),
        (WALLET, None, None, "Missing chain ID"),
        ("0x123", 1, None, "Invalid wallet address format"),
        (WALLET, 1, "0xzz", "Invalid token address format"),
    ],
)
def test_validation(address, chain_id, token, message):
    provider = CountingProvider()
    with pytest.raises(ValidationError) as exc:
        BalanceService(provider).get_balance(address, chain_id, token)
    assert exc.value.message == message
    assert provider.calls == 0


def test_provider_failure_is_not_cached(provider_error):
    provider = CountingProvider(error=provider_error("rpc down", status_code=502))
    service = BalanceService(provider)

    with pytest.raises(ExternalServiceError):
        service.get_balance(WALLET, 1)
    provider.error = None
    assert service.get_balance(WALLET, 1)["cached"] is False
