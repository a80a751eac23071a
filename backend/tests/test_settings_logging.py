from __future__ import annotations

import io
import json
import logging
from pathlib import Path

import pytest
from pythonjsonlogger import jsonlogger
from starlette.requests import Request

from scripts.check_junction_traffic import build_parser
from traffic_api.api_keys import require_api_key
from traffic_api import logging_utils
from traffic_api.logging_utils import _parse_level, _resolve_log_dir, get_logger, log_event, log_warning
from traffic_api.rate_limit import FixedWindowRateLimiter, client_identity
from traffic_api.settings import Settings, settings


def _request(headers: dict[str, str] | None = None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw, "client": ("10.0.0.7", 5555)})


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TII_BASE_URL", "https://tii.example/")
    monkeypatch.setenv("LLM_PROVIDER", " OpenAI ")
    monkeypatch.setenv("API_KEYS", "alpha, beta,,")
    monkeypatch.setenv("JUNCTION_CONCURRENCY", "4")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")

    cfg = Settings(_env_file=None)
    assert cfg.tii_base_url == "https://tii.example"
    assert cfg.llm_provider == "openai"
    assert cfg.api_key_set() == {"alpha", "beta"}
    assert cfg.junction_concurrency == 4
    assert cfg.rate_limit_enabled is False
    assert cfg.cache_ttl_s == 300


def test_settings_reject_out_of_range_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JUNCTION_CONCURRENCY", "0")
    with pytest.raises(ValueError):
        Settings(_env_file=None)


def test_logging_helpers_parse_levels_and_emit_event(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "out_dir", str(tmp_path))

    assert _parse_level("debug") == logging.DEBUG
    assert _parse_level("not_a_level") == logging.INFO
    assert _resolve_log_dir(str(tmp_path)) == tmp_path / "logs"

    logger1 = get_logger()
    handlers_before = len(logger1.handlers)
    logger2 = get_logger()
    assert logger1 is logger2
    assert len(logger2.handlers) == handlers_before


def test_file_handler_writes_api_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "out_dir", str(tmp_path))
    monkeypatch.setattr(logging_utils, "LOGGER_NAME", "traffic_api.file_handler_check")
    logger = get_logger()
    try:
        logger.info("startup", extra={"event": "startup"})
        for handler in logger.handlers:
            handler.flush()
        line = json.loads((tmp_path / "logs" / "api.log.jsonl").read_text(encoding="utf-8").splitlines()[-1])
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
    assert line["event"] == "startup"
    assert line["level"] == "INFO"
    assert "ts" in line


def test_log_event_writes_json_fields() -> None:
    logger = get_logger()
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(jsonlogger.JsonFormatter())
    logger.addHandler(handler)
    try:
        log_event("adapter_fetch", source="national-roads", road="M1", record_count=3)
        log_warning("adapter_fetch_failed", source="uk-highways", error="HTTP 503")
        log_event("segment_lookup", name="J6-J5 Balbriggan", module="junctions")
    finally:
        logger.removeHandler(handler)

    lines = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert lines[0]["message"] == "adapter_fetch"
    assert lines[0]["event"] == "adapter_fetch"
    assert lines[0]["record_count"] == 3
    assert lines[1]["error"] == "HTTP 503"
    assert lines[2]["field_name"] == "J6-J5 Balbriggan"
    assert lines[2]["field_module"] == "junctions"


def test_require_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    from fastapi import HTTPException

    monkeypatch.setattr(settings, "api_keys", "k1,k2")
    assert require_api_key(_request({"x-api-key": "k2"})) == "k2"
    for headers in (None, {"x-api-key": "k3"}, {"x-api-key": "  "}):
        with pytest.raises(HTTPException) as excinfo:
            require_api_key(_request(headers))
        assert excinfo.value.status_code == 401


def test_fixed_window_rate_limiter() -> None:
    now = {"t": 0.0}
    limiter = FixedWindowRateLimiter(max_requests=2, window_s=60, clock=lambda: now["t"])

    assert limiter.hit("ip:a") == (True, 1, 60.0)
    assert limiter.hit("ip:a")[0] is True
    allowed, remaining, reset_in = limiter.hit("ip:a")
    assert (allowed, remaining) == (False, 0)
    assert reset_in == 60.0
    assert limiter.hit("ip:b")[0] is True

    now["t"] = 60.0
    assert limiter.hit("ip:a")[0] is True

    limiter.reset()
    now["t"] = 61.0
    assert limiter.hit("ip:a") == (True, 1, 60.0)


def test_fixed_window_rate_limiter_drops_expired_windows() -> None:
    now = {"t": 0.0}
    limiter = FixedWindowRateLimiter(max_requests=5, window_s=60, clock=lambda: now["t"])

    for n in range(50):
        limiter.hit(f"ip:10.0.0.{n}")
    assert len(limiter) == 50

    now["t"] = 30.0
    limiter.hit("ip:late")
    assert len(limiter) == 51

    now["t"] = 60.0
    limiter.hit("ip:fresh")
    assert len(limiter) == 2

    now["t"] = 200.0
    assert limiter.sweep() == 2
    assert len(limiter) == 0


def test_client_identity_prefers_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "api_keys", "k1,k2")
    assert client_identity(_request({"x-api-key": "k1"})) == "key:k1"
    # Unknown keys must not mint their own budget.
    assert client_identity(_request({"x-api-key": "junk-1"})) == "ip:10.0.0.7"
    assert client_identity(_request({"x-api-key": "junk-2"})) == "ip:10.0.0.7"
    assert client_identity(_request()) == "ip:10.0.0.7"


def test_junction_cli_parser_defaults() -> None:
    args = build_parser().parse_args([])
    assert args.direction == "southbound"
    assert args.no_notify is False
    assert args.json is False

    args = build_parser().parse_args(["northbound", "--no-notify", "--json"])
    assert args.direction == "northbound"
    assert args.no_notify is True
    assert args.json is True
