#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
from typing import Any
from uuid import uuid4

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from evento_sync.core.config import get_settings
from evento_sync.db import init_db
from evento_sync.errors import detail_from_exception
from evento_sync.services.container import build_scheduler
from evento_sync.services.maintenance import MaintenanceRunResult

logger = logging.getLogger("run_cache_maintenance")


def _emit_record(record: dict[str, Any], output_path: Path | None) -> None:
    line = json.dumps(record, sort_keys=True)
    print(line)
    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("a", encoding="utf-8") as f:
            f.write(line)
            f.write("\n")


def build_records(run: MaintenanceRunResult, *, run_id: str) -> list[dict[str, Any]]:
    base = {
        "run_id": run_id,
        "purged": run.purged,
        "from_date": run.from_date.isoformat() if run.from_date else None,
        "to_date": run.to_date.isoformat() if run.to_date else None,
    }
    if run.error_code is not None:
        return [
            {
                **base,
                "producer_id": None,
                "name": None,
                "result": "error",
                "started_at": run.started_at.isoformat(),
                "finished_at": run.finished_at.isoformat() if run.finished_at else None,
                "error_code": run.error_code,
                "error_message": run.error_message,
            }
        ]
    return [{**base, **outcome.to_record()} for outcome in run.outcomes]


def run_once(*, force_purge: bool = False) -> MaintenanceRunResult:
    init_db()
    scheduler = build_scheduler(get_settings())
    return scheduler.run(force_purge=force_purge)


def main() -> int:
    parser = argparse.ArgumentParser(description="Run Evento cache maintenance once.")
    parser.add_argument("--force-purge", action="store_true")
    parser.add_argument("--output-jsonl", type=Path)
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    run_id = str(uuid4())
    try:
        run = run_once(force_purge=args.force_purge)
    except Exception as exc:
        detail = detail_from_exception(exc, default_code="MAINTENANCE_FAILED")
        logger.error(f"Cache maintenance aborted: {detail.get('message')}")
        _emit_record(
            {
                "run_id": run_id,
                "result": "error",
                "error_code": detail.get("error_code"),
                "error_message": detail.get("message"),
            },
            args.output_jsonl,
        )
        return 1

    records = build_records(run, run_id=run_id)
    for record in records:
        _emit_record(record, args.output_jsonl)

    return 1 if any(record["result"] == "error" for record in records) else 0


if __name__ == "__main__":
    raise SystemExit(main())
