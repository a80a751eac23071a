from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

TraceOutcome = Literal["ok", "empty", "error", "skipped", "cache_hit"]


@dataclass
class TraceEntry:
    step: str
    outcome: TraceOutcome
    source: str | None = None
    record_count: int = 0
    from_cache: bool = False
    error: str | None = None
    duration_ms: float | None = None
    detail: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class FetchTrace:
    """Ordered log of what one resolve call tried and what came back."""

    entries: list[TraceEntry] = field(default_factory=list)

    def add(self, entry: TraceEntry) -> TraceEntry:
        self.entries.append(entry)
        return entry

    def skip(self, step: str, detail: str, *, source: str | None = None) -> TraceEntry:
        return self.add(TraceEntry(step=step, outcome="skipped", source=source, detail=detail))

    def record(
        self,
        step: str,
        *,
        source: str,
        record_count: int,
        from_cache: bool = False,
        error: str | None = None,
        duration_ms: float | None = None,
        detail: str | None = None,
    ) -> TraceEntry:
        if error is not None:
            outcome: TraceOutcome = "error"
        elif from_cache:
            outcome = "cache_hit"
        elif record_count > 0:
            outcome = "ok"
        else:
            outcome = "empty"
        return self.add(
            TraceEntry(
                step=step,
                outcome=outcome,
                source=source,
                record_count=record_count,
                from_cache=from_cache,
                error=error,
                duration_ms=duration_ms,
                detail=detail,
            )
        )

    def steps(self) -> list[str]:
        return [entry.step for entry in self.entries]

    def as_list(self) -> list[dict[str, Any]]:
        return [entry.as_dict() for entry in self.entries]


@contextmanager
def stopwatch() -> Iterator[dict[str, float]]:
    timing = {"ms": 0.0}
    started = time.perf_counter()
    try:
        yield timing
    finally:
        timing["ms"] = round((time.perf_counter() - started) * 1000.0, 2)
