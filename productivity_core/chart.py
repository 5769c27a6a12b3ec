"""Axis scale and smooth curve for bucketed totals."""

from __future__ import annotations

from dataclasses import dataclass, field
from math import ceil
from typing import Sequence

import numpy as np

from productivity_core.periods import Bucket

MIN_SCALE_MINUTES = 15
HEADROOM = 1.2


@dataclass
class AxisScale:
    ticks: list[int]
    max: int
    step: int


@dataclass
class ChartPoint:
    x: float
    y: float
    total: float
    label: str = ""
    synthetic: bool = False
    status: str | None = None
    progress_pct: int | None = None


@dataclass
class ChartModel:
    scale: AxisScale
    points: list[ChartPoint] = field(default_factory=list)
    path: str = ""
    reference_value: float | None = None

    @property
    def ticks(self) -> list[int]:
        return self.scale.ticks


def _tick_step(max_display: float) -> int:
    if max_display <= 30:
        return 15
    if max_display <= 120:
        return 30
    if max_display <= 240:
        return 60
    return int(ceil(max_display / 6 / 60) * 60)


def axis_scale(max_total: float, reference: float | None = None) -> AxisScale:
    """Choose a readable minute scale with 20% headroom above the data and target."""

    max_display = max(float(max_total), float(reference or 0.0), MIN_SCALE_MINUTES)
    step = _tick_step(max_display)
    scale_max = int(ceil(max_display * HEADROOM / step) * step)
    ticks = [int(t) for t in np.arange(0, scale_max + step, step)]
    return AxisScale(ticks=ticks, max=scale_max, step=step)


def layout_points(
    totals: Sequence[float],
    scale_max: float,
    width: float = 800,
    height: float = 400,
    padding: float = 60,
) -> np.ndarray:
    """Map totals to SVG coordinates; x evenly spaced, y growing downwards."""

    values = np.asarray(totals, dtype=float)
    if values.size == 0:
        return np.empty((0, 2))
    inner_width = width - padding * 2
    inner_height = height - padding * 2
    xs = padding + (np.arange(values.size) / max(values.size - 1, 1)) * inner_width
    ys = padding + inner_height - (values / max(scale_max, 1)) * inner_height
    return np.column_stack([xs, ys])


def bezier_segments(points) -> list[tuple[tuple[float, float], tuple[float, float], tuple[float, float]]]:
    """Cubic segments (cp1, cp2, end) through every point.

    Tangents are central differences inside and one-sided at the ends, scaled
    by one third, so control points never cross neighbouring x positions.
    """

    pts = np.asarray(points, dtype=float)
    if len(pts) < 2:
        return []
    tangents = np.gradient(pts, axis=0)
    segments = []
    for i in range(1, len(pts)):
        cp1 = pts[i - 1] + tangents[i - 1] / 3.0
        cp2 = pts[i] - tangents[i] / 3.0
        end = pts[i]
        segments.append(
            (
                (float(cp1[0]), float(cp1[1])),
                (float(cp2[0]), float(cp2[1])),
                (float(end[0]), float(end[1])),
            )
        )
    return segments


def _fmt(value: float) -> str:
    return f"{value:.17g}"


def smooth_path(points) -> str:
    """SVG path data for a smooth curve through ``points``."""

    pts = np.asarray(points, dtype=float)
    if len(pts) == 0:
        return ""
    parts = [f"M {_fmt(pts[0][0])} {_fmt(pts[0][1])}"]
    for cp1, cp2, end in bezier_segments(pts):
        parts.append(
            f"C {_fmt(cp1[0])} {_fmt(cp1[1])}, {_fmt(cp2[0])} {_fmt(cp2[1])}, {_fmt(end[0])} {_fmt(end[1])}"
        )
    return " ".join(parts)


def target_status(total: float, reference: float | None) -> tuple[str | None, int | None]:
    if reference is None:
        return None, None
    if total == 0:
        status = "empty"
    elif total >= reference:
        status = "above"
    else:
        status = "below"
    progress = int(round(total / reference * 100)) if reference > 0 else None
    return status, progress


def build_chart_model(
    buckets: Sequence[Bucket | float],
    reference_value: float | None = 60,
    width: float = 800,
    height: float = 400,
    padding: float = 60,
) -> ChartModel:
    """Scale, points and smooth path for bucket totals (or raw numbers)."""

    totals: list[float] = []
    labels: list[str] = []
    synthetic: list[bool] = []
    for item in buckets:
        if isinstance(item, Bucket):
            totals.append(float(item.display_total))
            labels.append(item.label)
            synthetic.append(item.synthetic)
        else:
            totals.append(float(item))
            labels.append("")
            synthetic.append(False)

    scale = axis_scale(max(totals, default=0.0), reference_value)
    coords = layout_points(totals, scale.max, width=width, height=height, padding=padding)

    points = []
    for (x, y), total, label, is_synthetic in zip(coords, totals, labels, synthetic):
        status, progress = target_status(total, reference_value)
        points.append(
            ChartPoint(
                x=float(x),
                y=float(y),
                total=total,
                label=label,
                synthetic=is_synthetic,
                status=status,
                progress_pct=progress,
            )
        )

    return ChartModel(scale=scale, points=points, path=smooth_path(coords), reference_value=reference_value)
