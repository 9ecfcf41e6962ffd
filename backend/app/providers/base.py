from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

_TRANSIENT_STATUS = {429, 502, 503, 504}


class ProviderError(RuntimeError):
    """Domain-level provider exception."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return self.status_code is None or self.status_code in _TRANSIENT_STATUS


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.transient


class ServiceProvider(ABC):
    """Common contract for the external HTTP collaborators."""

    provider_type: str = "base"

    def __init__(self, name: str, config: dict[str, Any]) -> None:
        self.name = name
        self.config = config

    @abstractmethod
    def validate_config(self) -> None:
        """Validate provider-specific config and raise ProviderError on failure."""

    def _timeout(self) -> float:
        return float(self.config.get("timeout_seconds", 30))

    def handle_error(self, error: Exception) -> ProviderError:
        if isinstance(error, ProviderError):
            return error
        if isinstance(error, httpx.HTTPStatusError):
            code = error.response.status_code
            if code == 429:
                return ProviderError("Rate limit reached. Retry later.", status_code=code)
            if code == 503:
                return ProviderError("Provider temporarily unavailable (503).", status_code=code)
            return ProviderError(
                f"{self.provider_type} API error {code}: {error.response.text}", status_code=code
            )
        if isinstance(error, httpx.RequestError):
            return ProviderError(f"{self.provider_type} request failed: {error}")
        return ProviderError(str(error))

    @retry(
        retry=retry_if_exception(_is_transient),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _with_retry(self, fn, *args, **kwargs):
        """Run a read-only provider call, retrying transport errors and 429/5xx."""
        try:
            return fn(*args, **kwargs)
        except (httpx.HTTPError, ProviderError) as exc:
            raise self.handle_error(exc) from exc

    def _request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            with httpx.Client(timeout=self._timeout()) as client:
                return client.request(method=method, url=url, headers=headers, json=json, params=params)
        except httpx.RequestError as exc:
            raise self.handle_error(exc) from exc

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {"text": response.text}

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.status_code >= 400:
            raise ProviderError(
                f"{action} failed: {response.status_code}",
                status_code=response.status_code,
            )
