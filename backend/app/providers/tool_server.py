from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from app.config.settings import get_settings
from app.providers.base import ProviderError, ServiceProvider


class ToolServerProvider(ServiceProvider):
    """Remote tool host speaking ``POST /invoke {tool, input} -> {output}``."""

    provider_type = "tool_server"

    def validate_config(self) -> None:
        parsed = urlparse(str(self.config.get("base_url", "")))
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ProviderError("Tool server base_url must be a valid http(s) URL")

    def invoke(self, tool: str, tool_input: dict[str, Any], *, correlation_id: str) -> Any:
        headers = {"Content-Type": "application/json", "X-Correlation-Id": correlation_id}
        token = self.config.get("token")
        if token:
            headers["Authorization"] = f"Bearer {token}"
        url = str(self.config.get("base_url", "")).rstrip("/") + "/invoke"
        response = self._request("POST", url, headers=headers, json={"tool": tool, "input": tool_input})
        if response.status_code >= 400:
            raise ProviderError(
                f"Tool invocation failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        return (self._json(response) or {}).get("output")


def get_tool_server() -> ToolServerProvider:
    settings = get_settings()
    return ToolServerProvider(
        "tool_server",
        {
            "base_url": settings.tool_server_url,
            "token": settings.tool_server_token,
            "timeout_seconds": settings.tool_timeout_seconds,
        },
    )
