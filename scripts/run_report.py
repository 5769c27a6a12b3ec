"""Build a work-time chart model from a JSON snapshot."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from productivity_core.adapters import json_adapter
from productivity_core.chart import build_chart_model
from productivity_core.config import load_config
from productivity_core.metrics import format_minutes, global_stats, period_summary
from productivity_core.periods import GRANULARITIES, build_buckets


def build_report(snapshot_path: Path, granularity: str, count: int | None, today: date, config) -> dict:
    snapshot = json_adapter.parse(str(snapshot_path))
    buckets = build_buckets(
        granularity,
        snapshot.collections,
        today,
        count=count,
        week_start=config.report.week_start_index,
        filler_threshold=config.report.filler_threshold_minutes,
        seed=config.report.filler_seed,
    )
    model = build_chart_model(buckets, reference_value=config.report.reference_minutes)
    summary = period_summary(buckets)
    return {
        "granularity": granularity,
        "buckets": [
            {
                "label": bucket.label,
                "start": bucket.window.start.isoformat(),
                "end": bucket.window.end.isoformat(),
                "real_total": bucket.real_total,
                "per_kind": bucket.details.per_kind,
                "display_total": bucket.display_total,
                "synthetic": bucket.synthetic,
            }
            for bucket in buckets
        ],
        "summary": {**summary, "total_formatted": format_minutes(summary["total"])},
        "global": global_stats(buckets),
        "chart": {
            "ticks": model.ticks,
            "path": model.path,
            "points": [asdict(point) for point in model.points],
        },
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Aggregate a productivity snapshot into chart-ready buckets")
    parser.add_argument("--data", required=True, help="Path to a JSON snapshot")
    parser.add_argument("--granularity", choices=GRANULARITIES, default="week")
    parser.add_argument("--count", type=int, default=None, help="Number of buckets (default depends on granularity)")
    parser.add_argument("--today", default=None, help="Reference day YYYY-MM-DD (default: today)")
    parser.add_argument("--config", default="productivity.toml", help="Optional TOML config file")
    parser.add_argument("--out", default=None, help="Write the report JSON to this path")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    config, warning = load_config(Path(args.config))
    if warning:
        logging.getLogger("run_report").warning(warning)

    today = date.fromisoformat(args.today) if args.today else date.today()
    report = build_report(Path(args.data), args.granularity, args.count, today, config)
    print(json.dumps(report, indent=2))

    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(json.dumps(report, indent=2), encoding="utf-8")
        print(f"Saved report to {out_path}")


if __name__ == "__main__":
    main()
