from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

from .logging_utils import log_event, log_warning
from .models import NormalizedTrafficRecord, Source
from .provider_http import ProviderError, describe_exception
from .settings import settings
from .ttl_cache import TTLCache


def utc_now_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def safe_float(value: Any, default: float = 0.0) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(out) or math.isinf(out):
        return default
    return out


def optional_float(value: Any) -> float | None:
    out = safe_float(value, float("nan"))
    return None if math.isnan(out) else out


def optional_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


@dataclass
class AdapterResult:
    source: Source
    data: list[NormalizedTrafficRecord] = field(default_factory=list)
    from_cache: bool = False
    error: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)
    # Per-request detail for adapters that may issue several lookups for one query.
    attempts: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


class TrafficAdapter(ABC):
    """One external feed normalised into :class:`NormalizedTrafficRecord`.

    ``fetch`` resolves with ``data=[]`` and an ``error`` string for timeouts,
    non-2xx responses and malformed payloads instead of raising, so callers can
    treat "no data" the same way whatever the cause.
    """

    source: Source

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        cache: TTLCache,
        timeout_s: float | None = None,
    ) -> None:
        self._client = client
        self.cache = cache
        self.timeout_s = float(settings.provider_timeout_s if timeout_s is None else timeout_s)

    @abstractmethod
    def is_applicable(self, road: str, country: str | None = None) -> bool:
        """Whether this feed could plausibly cover ``road``."""

    @abstractmethod
    async def _fetch_records(self, road: str, **kwargs: Any) -> tuple[list[NormalizedTrafficRecord], str | None]:
        """Network round trip(s) plus normalisation; may raise :class:`ProviderError`.

        Returns the records and an optional degradation note. Degraded results
        are returned to the caller but never cached.
        """

    def cache_key(self, road: str, **kwargs: Any) -> str:
        return road.strip().upper()

    async def fetch(self, road: str, **kwargs: Any) -> AdapterResult:
        key = self.cache_key(road, **kwargs)
        cached = self.cache.get(key)
        if cached is not None:
            log_event("adapter_cache_hit", source=self.source, cache_key=key, record_count=len(cached))
            return AdapterResult(source=self.source, data=cached, from_cache=True)

        try:
            records, degraded = await self._fetch_records(road, **kwargs)
        except ProviderError as e:
            log_warning("adapter_fetch_failed", source=self.source, road=road, error=str(e))
            return AdapterResult(source=self.source, error=str(e))
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            # Unexpected payload shape.
            detail = f"{self.source} payload could not be normalised: {describe_exception(e)}"
            log_warning("adapter_fetch_failed", source=self.source, road=road, error=detail)
            return AdapterResult(source=self.source, error=detail)

        log_event(
            "adapter_fetch",
            source=self.source,
            road=road,
            record_count=len(records),
            degraded=degraded,
        )
        if degraded is not None:
            return AdapterResult(source=self.source, data=records, error=degraded)
        self.cache.set(key, records)
        return AdapterResult(source=self.source, data=records)
