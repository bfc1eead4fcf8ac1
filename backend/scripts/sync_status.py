#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys
from typing import Any

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from evento_sync.core.config import get_settings
from evento_sync.db import init_db
from evento_sync.services.container import build_stats_repository
from evento_sync.services.stats import StatsSnapshot


def build_status(snapshot: StatsSnapshot, *, producer_id: str | None = None) -> dict[str, Any]:
    producers = snapshot.producers
    if producer_id is not None:
        if producer_id not in producers:
            raise ValueError(f"No stats recorded for producer {producer_id}")
        producers = {producer_id: producers[producer_id]}

    return {
        "producers": {
            pid: {**stats.to_dict(), "error_rate": stats.error_rate} for pid, stats in sorted(producers.items())
        },
        "totals": {**snapshot.totals.to_dict(), "error_rate": snapshot.totals.error_rate},
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Show persisted Evento API statistics.")
    parser.add_argument("--producer-id")
    args = parser.parse_args()

    try:
        init_db()
        snapshot = build_stats_repository(get_settings()).load()
        status = build_status(snapshot, producer_id=args.producer_id)
    except Exception as exc:
        print(str(exc), file=sys.stderr)
        return 1

    print(json.dumps(status, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
