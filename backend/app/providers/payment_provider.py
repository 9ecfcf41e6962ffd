"""
Payment provider client: two-phase token payments, transaction status and
on-chain balance reads against a Thirdweb-compatible REST API.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx

from app.config.settings import get_settings
from app.providers.base import ProviderError, ServiceProvider

logger = logging.getLogger(__name__)

# Provider status -> internal transaction status.
_STATUS_MAP = {
    "QUEUED": "pending",
    "SUBMITTED": "pending",
    "CONFIRMED": "confirmed",
    "FAILED": "failed",
}


def map_provider_status(status: str | None) -> str:
    """Unknown or missing statuses are treated as still pending."""
    return _STATUS_MAP.get(str(status or "").upper(), "pending")


@dataclass
class PaymentCompletion:
    insufficient_funds: bool
    provider_transaction_id: str | None = None


@dataclass
class TransactionStatusResult:
    status: str
    transaction_hash: str | None = None


class PaymentProvider(ServiceProvider):
    provider_type = "payments"

    def validate_config(self) -> None:
        base_url = str(self.config.get("api_base", "")).strip()
        parsed = urlparse(base_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ProviderError("Payment provider api_base must be a valid http(s) URL")
        if not self.config.get("client_id"):
            raise ProviderError("Payment provider client_id is not configured")

    def _base_url(self) -> str:
        return str(self.config.get("api_base", "")).rstrip("/")

    def _result(self, response: httpx.Response, action: str) -> Any:
        body = self._json(response)
        if not isinstance(body, dict):
            raise ProviderError(f"{action} returned a malformed body", status_code=response.status_code)
        return body.get("result")

    def _headers(self, auth_token: str | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "x-client-id": str(self.config.get("client_id", "")),
        }
        token = auth_token or self.config.get("secret_key")
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def create_payment(
        self,
        *,
        recipient: str,
        token_contract: str,
        chain_id: int | None,
        amount: str,
        name: str,
        description: str,
        auth_token: str | None = None,
    ) -> dict[str, Any]:
        """Phase one. Returns ``{"id", "link"}``; raises ProviderError on any non-2xx."""
        response = self._request(
            "POST",
            f"{self._base_url()}/payments",
            headers=self._headers(auth_token),
            json={
                "name": name,
                "description": description,
                "recipient": recipient,
                "token": {"address": token_contract, "chainId": chain_id, "amount": amount},
            },
        )
        self._raise_for_status(response, "Payment creation")
        result = self._result(response, "Payment creation")
        if not isinstance(result, dict) or not result.get("id"):
            raise ProviderError("Payment creation returned no payment id")
        return {"id": result["id"], "link": result.get("link")}

    def complete_payment(
        self, payment_id: str, *, from_address: str | None, auth_token: str | None = None
    ) -> PaymentCompletion:
        """Phase two. HTTP 402 is a result (insufficient funds), not an error."""
        response = self._request(
            "POST",
            f"{self._base_url()}/payments/{payment_id}",
            headers=self._headers(auth_token),
            json={"from": from_address},
        )
        if response.status_code == 402:
            return PaymentCompletion(insufficient_funds=True)
        self._raise_for_status(response, "Payment completion")
        result = self._result(response, "Payment completion")
        if not isinstance(result, dict) or not result.get("transactionId"):
            raise ProviderError("Payment completion returned no transaction id")
        return PaymentCompletion(insufficient_funds=False, provider_transaction_id=str(result["transactionId"]))

    def get_transaction_status(self, provider_transaction_id: str) -> TransactionStatusResult:
        def _call() -> TransactionStatusResult:
            response = self._request(
                "GET",
                f"{self._base_url()}/transactions/{provider_transaction_id}",
                headers={"x-client-id": str(self.config.get("client_id", ""))},
            )
            self._raise_for_status(response, "Transaction status lookup")
            result = self._result(response, "Transaction status lookup") or {}
            if not isinstance(result, dict):
                raise ProviderError(
                    "Transaction status lookup returned a malformed result", status_code=response.status_code
                )
            return TransactionStatusResult(
                status=map_provider_status(result.get("status")),
                transaction_hash=result.get("transactionHash"),
            )

        return self._with_retry(_call)

    def token_balance(self, chain_id: int, token_address: str, owner_address: str) -> dict[str, Any] | None:
        """ERC-20 balance. ``None`` when the provider does not know the token (404)."""

        def _call() -> dict[str, Any] | None:
            response = self._request(
                "GET",
                f"{self._base_url()}/chains/{chain_id}/tokens/{token_address}/balanceOf",
                headers={"x-client-id": str(self.config.get("client_id", ""))},
                params={"ownerAddress": owner_address},
            )
            if response.status_code == 404:
                return None
            self._raise_for_status(response, "Token balance lookup")
            return self._result(response, "Token balance lookup") or {}

        return self._with_retry(_call)

    def native_balance_wei(self, chain_id: int, address: str) -> int:
        def _call() -> int:
            response = self._request(
                "POST",
                f"{self._base_url()}/chains/{chain_id}/rpc",
                headers=self._headers(),
                json={"jsonrpc": "2.0", "method": "eth_getBalance", "params": [address, "latest"], "id": 1},
            )
            self._raise_for_status(response, "Native balance lookup")
            raw = self._result(response, "Native balance lookup") or "0x0"
            return int(raw, 16) if isinstance(raw, str) else int(raw)

        return self._with_retry(_call)


def get_payment_provider() -> PaymentProvider:
    settings = get_settings()
    return PaymentProvider(
        "payments",
        {
            "api_base": settings.payment_api_base,
            "client_id": settings.payment_client_id,
            "secret_key": settings.payment_secret_key,
            "timeout_seconds": settings.payment_timeout_seconds,
        },
    )
