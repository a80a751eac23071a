from __future__ import annotations

# ruff: noqa: E402
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Sequence

import httpx

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from traffic_api.junction_report import run_scheduled_check
from traffic_api.main import build_services
from traffic_api.models import JunctionReport


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build the M1 Drogheda-Swords junction report and optionally post it to Telegram."
    )
    parser.add_argument("direction", nargs="?", choices=("southbound", "northbound"), default="southbound")
    parser.add_argument("--no-notify", action="store_true", help="Print only; never send to Telegram.")
    parser.add_argument("--json", action="store_true", help="Print the structured report instead of the text.")
    return parser


async def run_check(direction: str, *, notify: bool) -> JunctionReport:
    async with httpx.AsyncClient() as client:
        services = build_services(client)
        return await run_scheduled_check(
            services.orchestrator,
            direction,  # type: ignore[arg-type]
            notifier=services.notifier,
            notify=notify,
        )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    report = asyncio.run(run_check(args.direction, notify=not args.no_notify))
    if args.json:
        print(json.dumps(report.model_dump(), indent=2, ensure_ascii=False))
    else:
        print(report.report_text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
