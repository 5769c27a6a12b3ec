"""Streamlit demo UI for productivity-core."""

from __future__ import annotations

import tempfile
from datetime import date
from typing import Any

from productivity_core.adapters import json_adapter
from productivity_core.chart import ChartModel, build_chart_model
from productivity_core.metrics import (
    category_distribution,
    event_duration_distribution,
    format_minutes,
    global_stats,
    okr_summary,
    period_summary,
    priority_distribution,
)
from productivity_core.periods import DEFAULT_BUCKET_COUNTS, GRANULARITIES, build_buckets

DEMO_SNAPSHOT = "examples/sample_snapshot.json"
CHART_WIDTH = 800
CHART_HEIGHT = 400


def _parse_uploaded(uploaded_file) -> json_adapter.Snapshot:
    with tempfile.NamedTemporaryFile(delete=False, suffix=".json") as handle:
        handle.write(uploaded_file.getbuffer())
        temp_path = handle.name
    return json_adapter.parse(temp_path)


def _status_color(status: str | None) -> str:
    return {"above": "#10B981", "below": "#F97316", "empty": "#94A3B8"}.get(status or "", "#3B82F6")


def render_svg(model: ChartModel) -> str:
    """Render the chart model as a standalone SVG string."""

    parts = [f'<svg viewBox="0 0 {CHART_WIDTH} {CHART_HEIGHT}" xmlns="http://www.w3.org/2000/svg">']
    inner = CHART_HEIGHT - 120
    for tick in model.ticks:
        y = 60 + inner - (tick / max(model.scale.max, 1)) * inner
        parts.append(f'<line x1="60" x2="{CHART_WIDTH - 60}" y1="{y:.1f}" y2="{y:.1f}" stroke="#E2E8F0"/>')
        parts.append(f'<text x="50" y="{y + 4:.1f}" font-size="11" text-anchor="end">{format_minutes(tick)}</text>')
    if model.reference_value:
        y = 60 + inner - (model.reference_value / max(model.scale.max, 1)) * inner
        parts.append(
            f'<line x1="60" x2="{CHART_WIDTH - 60}" y1="{y:.1f}" y2="{y:.1f}" stroke="#6366F1" stroke-dasharray="6 4"/>'
        )
    parts.append(f'<path d="{model.path}" fill="none" stroke="#3B82F6" stroke-width="3"/>')
    for point in model.points:
        dash = ' stroke-dasharray="2 2"' if point.synthetic else ""
        parts.append(
            f'<circle cx="{point.x:.1f}" cy="{point.y:.1f}" r="5" fill="{_status_color(point.status)}" '
            f'stroke="#1E293B"{dash}/>'
        )
        parts.append(
            f'<text x="{point.x:.1f}" y="{CHART_HEIGHT - 35}" font-size="11" text-anchor="middle">{point.label}</text>'
        )
    parts.append("</svg>")
    return "".join(parts)


def run_report(
    snapshot: json_adapter.Snapshot, granularity: str, count: int, reference: float, today: date
) -> dict[str, Any]:
    """Run aggregation, bucketing and charting and return a UI-friendly payload."""

    buckets = build_buckets(granularity, snapshot.collections, today, count=count)
    model = build_chart_model(buckets, reference_value=reference, width=CHART_WIDTH, height=CHART_HEIGHT)
    collections = snapshot.collections
    return {
        "buckets": buckets,
        "model": model,
        "summary": period_summary(buckets),
        "global": global_stats(buckets),
        "categories": category_distribution(collections.tasks, snapshot.categories),
        "priorities": priority_distribution(collections.tasks),
        "durations": event_duration_distribution(collections.events),
        "okrs": okr_summary(collections.okrs),
    }


def main() -> None:
    import streamlit as st

    st.set_page_config(page_title="Productivity Core Demo", layout="wide")
    st.title("Productivity Core: Work Time")

    with st.sidebar:
        st.header("Controls")
        uploaded = st.file_uploader("Upload snapshot", type=["json"])
        use_demo = st.checkbox("Load demo snapshot", value=True)
        granularity = st.selectbox("Period", options=list(GRANULARITIES), index=1)
        count = st.number_input(
            "Buckets", min_value=1, max_value=60, value=DEFAULT_BUCKET_COUNTS[granularity], step=1
        )
        reference = st.number_input("Target (minutes)", min_value=0, max_value=1440, value=60, step=15)
        today = st.date_input("Today", value=date.today())
        run = st.button("Build report", type="primary")

    if not run:
        st.info("Configure inputs in the sidebar and click **Build report**.")
        return

    try:
        if use_demo:
            snapshot = json_adapter.parse(DEMO_SNAPSHOT)
            data_source = f"demo snapshot ({DEMO_SNAPSHOT})"
        elif uploaded is not None:
            snapshot = _parse_uploaded(uploaded)
            data_source = f"uploaded file ({uploaded.name})"
        else:
            st.error("Please upload a JSON snapshot or enable 'Load demo snapshot'.")
            return

        result = run_report(snapshot, granularity, int(count), float(reference), today)
        st.success(f"Loaded snapshot from {data_source}.")

        st.subheader("A) Work time")
        summary = result["summary"]
        c1, c2, c3, c4 = st.columns(4)
        c1.metric("Total", format_minutes(summary["total"]))
        c2.metric("Average", format_minutes(summary["average"]))
        c3.metric("Best period", format_minutes(summary["max"]))
        c4.metric("Synthetic buckets", summary["synthetic_buckets"])
        st.caption(" · ".join(f"{key}: {format_minutes(value)}" for key, value in result["global"].items()))
        st.markdown(render_svg(result["model"]), unsafe_allow_html=True)

        st.subheader("B) Buckets")
        st.table(
            [
                {
                    "period": bucket.label,
                    "real": round(bucket.real_total),
                    "shown": bucket.display_total,
                    "synthetic": bucket.synthetic,
                    **{kind: round(value) for kind, value in bucket.details.per_kind.items()},
                }
                for bucket in result["buckets"]
            ]
        )

        st.subheader("C) Sections")
        s1, s2, s3 = st.columns(3)
        s1.write("**Categories**")
        s1.table(result["categories"])
        s2.write("**Priorities**")
        s2.table(result["priorities"])
        s3.write("**Event durations**")
        s3.table([{k: v for k, v in row.items() if k in ("label", "count")} for row in result["durations"]])
        st.write("**OKRs**")
        st.table([result["okrs"]])

    except ValueError as exc:
        st.error(f"Input error: {exc}")
    except Exception:
        st.error("Something went wrong while building the report. Please verify the snapshot format.")


if __name__ == "__main__":
    main()
