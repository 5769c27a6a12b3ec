"""Configuration loaded from a TOML file."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import tomllib

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _as_float(value, *, default: float) -> float:
    try:
        return float(value)
    except Exception:  # noqa: BLE001
        return float(default)


def _as_int(value, *, default: int) -> int:
    try:
        return int(value)
    except Exception:  # noqa: BLE001
        return int(default)


def _as_optional_int(value) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except Exception:  # noqa: BLE001
        return None


@dataclass(frozen=True)
class SyncConfig:
    refresh_timeout_s: float = 15.0
    write_timeout_s: float = 15.0


@dataclass(frozen=True)
class ReportConfig:
    week_start: str = "monday"
    reference_minutes: float = 60.0
    filler_threshold_minutes: float = 10.0
    filler_seed: int | None = None
    streak_horizon_days: int = 30

    @property
    def week_start_index(self) -> int:
        return WEEKDAYS.index(self.week_start)


@dataclass(frozen=True)
class CoreConfig:
    sync: SyncConfig = field(default_factory=SyncConfig)
    report: ReportConfig = field(default_factory=ReportConfig)


def _positive(value: float, default: float) -> float:
    return value if value > 0 else default


def parse_config(data: dict) -> tuple[CoreConfig, list[str]]:
    """Build a config from a decoded TOML mapping, falling back to defaults."""

    warnings: list[str] = []
    defaults_sync = SyncConfig()
    defaults_report = ReportConfig()

    sync_raw = data.get("sync", {}) if isinstance(data.get("sync"), dict) else {}
    report_raw = data.get("report", {}) if isinstance(data.get("report"), dict) else {}

    sync = SyncConfig(
        refresh_timeout_s=_positive(
            _as_float(sync_raw.get("refresh_timeout_s"), default=defaults_sync.refresh_timeout_s),
            defaults_sync.refresh_timeout_s,
        ),
        write_timeout_s=_positive(
            _as_float(sync_raw.get("write_timeout_s"), default=defaults_sync.write_timeout_s),
            defaults_sync.write_timeout_s,
        ),
    )

    week_start = str(report_raw.get("week_start", defaults_report.week_start)).strip().lower()
    if week_start not in WEEKDAYS:
        warnings.append(f"report.week_start {week_start!r} is not a weekday; using monday")
        week_start = defaults_report.week_start

    report = ReportConfig(
        week_start=week_start,
        reference_minutes=max(
            0.0, _as_float(report_raw.get("reference_minutes"), default=defaults_report.reference_minutes)
        ),
        filler_threshold_minutes=max(
            0.0,
            _as_float(report_raw.get("filler_threshold_minutes"), default=defaults_report.filler_threshold_minutes),
        ),
        filler_seed=_as_optional_int(report_raw.get("filler_seed")),
        streak_horizon_days=max(
            1, _as_int(report_raw.get("streak_horizon_days"), default=defaults_report.streak_horizon_days)
        ),
    )
    return CoreConfig(sync=sync, report=report), warnings


def load_config(path: Path) -> tuple[CoreConfig, str]:
    """Load config from a TOML file.

    Returns (config, warning). Warning is empty on success.
    """

    if not path.exists():
        return CoreConfig(), ""

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        return CoreConfig(), f"{path.name} could not be parsed: {exc}"

    config, warnings = parse_config(data)
    return config, "; ".join(warnings)
