from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from .logging_utils import log_debug, log_event
from .provider_http import describe_exception, format_http_error
from .settings import settings


@dataclass(eq=False)
class LLMError(RuntimeError):
    """Enrichment backend failure; ``reason_code`` is one of not_configured,
    auth_failed, rate_limited, http_error, timeout, bad_response, transport_error."""

    reason_code: str
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    default_model: str
    # "query": key travels as ?key=..., "bearer": Authorization header.
    auth: Literal["query", "bearer"]

    def endpoint(self, model: str) -> str:
        if self.name == "gemini":
            return f"{self.base_url}/{model}:generateContent"
        return f"{self.base_url}/chat/completions"

    def build_body(self, prompt: str, model: str) -> dict[str, Any]:
        if self.name == "gemini":
            return {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": 0.1,
                    "maxOutputTokens": 2048,
                    "responseMimeType": "application/json",
                },
            }
        return {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.1,
            "max_tokens": 500,
        }

    def parse_text(self, payload: Any) -> str:
        try:
            if self.name == "gemini":
                text = payload["candidates"][0]["content"]["parts"][0]["text"]
            else:
                text = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("bad_response", f"Invalid {self.name} response format") from e
        if not isinstance(text, str) or not text.strip():
            raise LLMError("bad_response", f"Empty {self.name} response")
        return text


PROVIDERS: dict[str, ProviderConfig] = {
    "gemini": ProviderConfig(
        name="gemini",
        base_url="https://generativelanguage.googleapis.com/v1beta/models",
        default_model="gemini-2.0-flash",
        auth="query",
    ),
    "openai": ProviderConfig(
        name="openai",
        base_url="https://api.openai.com/v1",
        default_model="gpt-4o-mini",
        auth="bearer",
    ),
    "kimi": ProviderConfig(
        name="kimi",
        base_url="https://api.moonshot.cn/v1",
        default_model="moonshot-v1-8k",
        auth="bearer",
    ),
}


def llm_status() -> dict[str, Any]:
    provider = settings.llm_provider
    config = PROVIDERS.get(provider)
    if not settings.llm_api_key:
        return {"enabled": False, "provider": provider, "model": None, "error": "LLM_API_KEY not set"}
    if config is None:
        return {"enabled": False, "provider": provider, "model": None, "error": f"Unknown provider: {provider}"}
    return {
        "enabled": True,
        "provider": provider,
        "model": settings.llm_model or config.default_model,
        "error": None,
    }


class LLMClient:
    """Thin completion client over whichever provider the settings select."""

    def __init__(self, *, client: httpx.AsyncClient, timeout_s: float | None = None) -> None:
        self._client = client
        self.timeout_s = float(settings.llm_timeout_s if timeout_s is None else timeout_s)

    async def complete(self, prompt: str) -> str:
        status = llm_status()
        if not status["enabled"]:
            raise LLMError("not_configured", f"LLM not configured: {status['error']}")

        config = PROVIDERS[status["provider"]]
        model = str(status["model"])
        url = config.endpoint(model)
        params: dict[str, str] = {}
        headers = {"Content-Type": "application/json"}
        if config.auth == "query":
            params["key"] = settings.llm_api_key
        else:
            headers["Authorization"] = f"Bearer {settings.llm_api_key}"

        body = config.build_body(prompt, model)
        if settings.llm_debug:
            log_debug("llm_request", provider=config.name, model=model, url=url, body=body)

        started = time.perf_counter()
        try:
            resp = await self._client.post(url, params=params, headers=headers, json=body, timeout=self.timeout_s)
        except httpx.TimeoutException as e:
            raise LLMError("timeout", f"LLM API timeout after {self.timeout_s:.0f}s") from e
        except httpx.HTTPError as e:
            raise LLMError("transport_error", f"LLM API call failed: {describe_exception(e)}") from e
        duration_ms = round((time.perf_counter() - started) * 1000.0, 2)

        if resp.status_code in (401, 403):
            raise LLMError("auth_failed", f"LLM API authentication failed: Invalid API key for {config.name}")
        if resp.status_code == 429:
            raise LLMError("rate_limited", f"LLM API rate limit exceeded for {config.name}")
        if resp.status_code >= 400:
            raise LLMError("http_error", format_http_error(resp, provider="LLM API"))

        try:
            payload = resp.json()
        except ValueError as e:
            raise LLMError("bad_response", f"{config.name} returned malformed JSON") from e

        text = config.parse_text(payload)
        log_event("llm_call", provider=config.name, model=model, duration_ms=duration_ms)
        if settings.llm_debug:
            log_debug("llm_response", provider=config.name, text=text[:500])
        return text
