from __future__ import annotations

import time
from typing import Any

import httpx


class ProviderError(RuntimeError):
    """A provider round trip failed (transport, HTTP status or payload shape)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    pass


def format_http_error(resp: httpx.Response, *, provider: str) -> str:
    """Best-effort decode of provider JSON error payloads."""
    try:
        data = resp.json()
        if isinstance(data, dict):
            message = data.get("error_message") or data.get("message") or data.get("error")
            if isinstance(message, dict):
                message = message.get("message")
            if message:
                return f"{provider} HTTP {resp.status_code}: {message}"
    except Exception:
        # fall through to text
        pass

    body = (resp.text or "").strip().replace("\n", " ")
    if len(body) > 240:
        body = body[:240] + "..."
    if body:
        return f"{provider} HTTP {resp.status_code}: {body}"
    return f"{provider} HTTP {resp.status_code}"


def describe_exception(exc: BaseException) -> str:
    # httpx exceptions can stringify to "" (e.g. some timeouts), so include the type.
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else f"{type(exc).__name__}: {exc!r}"


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    provider: str,
    timeout_s: float,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> Any:
    """GET ``url`` and decode JSON, mapping every failure mode onto :class:`ProviderError`."""
    started = time.perf_counter()
    try:
        resp = await client.get(url, params=params, headers=headers, timeout=timeout_s)
    except httpx.TimeoutException as e:
        elapsed = time.perf_counter() - started
        raise ProviderTimeoutError(f"{provider} timeout after {elapsed:.1f}s ({describe_exception(e)})") from e
    except httpx.HTTPError as e:
        raise ProviderError(f"{provider} request failed: {describe_exception(e)}") from e

    if resp.status_code >= 400:
        raise ProviderError(format_http_error(resp, provider=provider), status_code=resp.status_code)

    if resp.status_code == 204 or not resp.content:
        return {}
    try:
        return resp.json()
    except ValueError as e:
        raise ProviderError(f"{provider} returned malformed JSON", status_code=resp.status_code) from e
