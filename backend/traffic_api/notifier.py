from __future__ import annotations

import httpx

from .logging_utils import log_event, log_warning
from .provider_http import describe_exception, format_http_error
from .settings import settings


class TelegramNotifier:
    """Best-effort message sink for scheduled junction reports."""

    def __init__(self, *, client: httpx.AsyncClient, timeout_s: float | None = None) -> None:
        self._client = client
        self.timeout_s = float(settings.provider_timeout_s if timeout_s is None else timeout_s)

    @property
    def configured(self) -> bool:
        return bool(settings.telegram_bot_token and settings.telegram_chat_id)

    async def send(self, text: str) -> bool:
        if not self.configured:
            log_event("notify_skipped", reason="telegram_not_configured")
            return False

        url = f"{settings.telegram_api_url}/bot{settings.telegram_bot_token}/sendMessage"
        body = {"chat_id": settings.telegram_chat_id, "text": text, "parse_mode": "Markdown"}
        try:
            resp = await self._client.post(url, json=body, timeout=self.timeout_s)
        except httpx.HTTPError as e:
            log_warning("notify_failed", error=describe_exception(e))
            return False
        if resp.status_code >= 400:
            log_warning("notify_failed", error=format_http_error(resp, provider="Telegram"))
            return False
        log_event("notify_sent", chars=len(text))
        return True
