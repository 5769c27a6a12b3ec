"""Demo script for productivity-core."""

import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from productivity_core.adapters import json_adapter
from productivity_core.backends.memory import InMemoryAuth, InMemoryRemote
from productivity_core.chart import build_chart_model
from productivity_core.periods import build_buckets
from productivity_core.store import EntityStore


async def run() -> None:
    snapshot = json_adapter.parse("examples/sample_snapshot.json")
    store = EntityStore(InMemoryRemote(), InMemoryAuth())
    store.load_local(snapshot.collections, snapshot.categories, snapshot.lists)

    await store.toggle_habit_completion("h2", "2025-01-16")
    await store.record_progress("o1", "o1-2", 2, "2025-01-17")

    buckets = build_buckets("week", store.snapshot(), date(2025, 1, 19), count=4, seed=7)
    for bucket in buckets:
        flag = " (synthetic)" if bucket.synthetic else ""
        print(f"{bucket.label}: real={bucket.real_total:.0f}min shown={bucket.display_total}min{flag}")

    model = build_chart_model(buckets, reference_value=60)
    print("Ticks:", model.ticks)
    print("Path:", model.path)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run())


if __name__ == "__main__":
    main()
