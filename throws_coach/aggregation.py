from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Iterable, Mapping, Sequence, Union
from zoneinfo import ZoneInfo

import pandas as pd

from .config import WEEK_START_DAYS, get_config
from .models import (
    FOUL_REASON_LABELS,
    AggregationWindow,
    FoulReason,
    ThrowLogRecord,
    ValidationError,
    parse_flag,
    parse_timestamp,
    validate_distance,
)

LOGGER = logging.getLogger(__name__)

ThrowInput = Union[ThrowLogRecord, Mapping[str, Any]]

FRAME_COLUMNS = ["athlete_id", "created_at", "day", "distance", "is_foul", "foul_reason", "valid"]
RECENT_LOG_LIMIT = 10


@dataclass(frozen=True)
class ThrowSummary:
    total_throws: int
    valid_throws: int
    total_fouls: int
    foul_rate_pct: float
    best_distance: float
    average_distance: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalThrows": self.total_throws,
            "validThrows": self.valid_throws,
            "totalFouls": self.total_fouls,
            "foulRatePct": self.foul_rate_pct,
            "bestDistance": self.best_distance,
            "averageDistance": self.average_distance,
        }


@dataclass(frozen=True)
class ChartSeries:
    """Ordered label/value pairs ready for a line, bar or pie chart."""

    title: str
    labels: list[str]
    values: list[float]

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "labels": list(self.labels), "values": list(self.values)}


@dataclass(frozen=True)
class RecentThrow:
    """Row of the "recent training data" table."""

    id: str
    created_at: datetime
    athlete_id: str | None
    athlete_label: str
    drill_label: str
    distance: float | None
    is_foul: bool
    status: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": self.created_at.isoformat(),
            "athleteId": self.athlete_id,
            "athlete": self.athlete_label,
            "drill": self.drill_label,
            "distance": self.distance,
            "isFoul": self.is_foul,
            "status": self.status,
        }


@dataclass(frozen=True)
class ReportSnapshot:
    window_days: int
    athlete_id: str | None
    window: AggregationWindow
    distance_progression: ChartSeries
    foul_breakdown: ChartSeries
    weekly_volume: ChartSeries
    summary: ThrowSummary
    recent_logs: tuple[RecentThrow, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "windowDays": self.window_days,
            "athleteId": self.athlete_id,
            "window": {"start": self.window.start.isoformat(), "end": self.window.end.isoformat()},
            "distanceProgression": self.distance_progression.to_dict(),
            "foulBreakdown": self.foul_breakdown.to_dict(),
            "weeklyVolume": self.weekly_volume.to_dict(),
            "summary": self.summary.to_dict(),
            "recentLogs": [row.to_dict() for row in self.recent_logs],
        }


def _configured_timezone() -> tzinfo | None:
    name = get_config().timezone
    return ZoneInfo(name) if name else None


def _to_local(moment: datetime, zone: tzinfo | None) -> datetime:
    """Naive timestamps are already wall-clock time; aware ones are converted."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(zone).replace(tzinfo=None)


def _normalise_row(item: ThrowInput, zone: tzinfo | None) -> dict[str, Any] | None:
    if isinstance(item, ThrowLogRecord):
        return {
            "id": item.id,
            "athlete_id": item.athlete_id,
            "drill_id": item.drill_id,
            "throw_number": item.throw_number,
            "created_at": _to_local(item.created_at, zone),
            "distance": item.distance,
            "is_foul": bool(item.is_foul),
            "foul_reason": item.foul_reason.value if item.foul_reason else None,
        }
    if not isinstance(item, Mapping):
        raise TypeError(f"Unsupported throw log type: {type(item)!r}")

    try:
        created_at = parse_timestamp(item.get("created_at", item.get("createdAt")), field="createdAt")
        is_foul = parse_flag(item.get("is_foul", item.get("isFoul")), field="isFoul")
    except ValidationError as exc:
        LOGGER.warning("Skipping throw log %s: %s", item.get("id"), exc)
        return None

    distance = None
    if not is_foul:
        try:
            distance = validate_distance(item.get("distance"), field="distance")
        except ValidationError:
            distance = None
    reason = item.get("foul_reason", item.get("foulReason"))
    reason_text = str(reason.value if isinstance(reason, FoulReason) else reason).strip() if reason else ""
    athlete = item.get("athlete_id", item.get("athleteId"))
    drill = item.get("drill_id", item.get("drillId"))
    try:
        throw_number = int(item.get("throw_number", item.get("throwNumber")) or 0)
    except (TypeError, ValueError):
        throw_number = 0
    return {
        "id": str(item.get("id") or ""),
        "athlete_id": str(athlete) if athlete is not None else None,
        "drill_id": str(drill) if drill is not None else None,
        "throw_number": throw_number,
        "created_at": _to_local(created_at, zone),
        "distance": distance,
        "is_foul": is_foul,
        "foul_reason": reason_text or None,
    }


def throw_logs_to_dataframe(records: Iterable[ThrowInput]) -> pd.DataFrame:
    """Normalise throw logs into a pandas DataFrame keyed by local calendar day."""
    zone = _configured_timezone()
    rows: list[dict[str, Any]] = []
    for item in records:
        row = _normalise_row(item, zone)
        if row is None:
            continue
        row["day"] = row["created_at"].date()
        row["valid"] = not row["is_foul"] and row["distance"] is not None
        if row["distance"] is None:
            row["distance"] = float("nan")
        rows.append(row)

    if not rows:
        return pd.DataFrame(columns=FRAME_COLUMNS)

    df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    df["distance"] = pd.to_numeric(df["distance"], errors="coerce")
    df["is_foul"] = df["is_foul"].astype(bool)
    df["valid"] = df["valid"].astype(bool)
    return df


def week_start_for(day: date, week_start: str | None = None) -> date:
    """Return the first day of the week containing ``day``."""
    name = (week_start or get_config().week_start).strip().lower()
    if name not in WEEK_START_DAYS:
        raise ValueError(f"week_start must be one of {', '.join(WEEK_START_DAYS)}; received {week_start!r}.")
    offset = (day.weekday() - WEEK_START_DAYS[name]) % 7
    return day - timedelta(days=offset)


def filter_by_window_and_athlete(
    records: Sequence[ThrowInput],
    window: AggregationWindow,
    athlete_id: str | None = None,
) -> list[ThrowInput]:
    """Keep records created inside the window, optionally for a single athlete."""
    zone = _configured_timezone()
    start = _to_local(window.start, zone)
    end = _to_local(window.end, zone)
    kept: list[ThrowInput] = []
    for item in records:
        row = _normalise_row(item, zone)
        if row is None:
            continue
        if athlete_id and row["athlete_id"] != str(athlete_id):
            continue
        if start <= row["created_at"] <= end:
            kept.append(item)
    return kept


def compute_daily_best(records: Sequence[ThrowInput]) -> dict[date, float]:
    """Best valid distance per calendar day, ascending by day."""
    df = throw_logs_to_dataframe(records)
    if df.empty:
        return {}
    valid = df.loc[df["valid"]]
    if valid.empty:
        return {}
    bests = valid.groupby("day")["distance"].max().sort_index()
    return {day: float(value) for day, value in bests.items()}


def compute_foul_histogram(records: Sequence[ThrowInput]) -> dict[str, int]:
    """Count fouls per reason tag. Fouls without a reason are left out."""
    df = throw_logs_to_dataframe(records)
    if df.empty:
        return {}
    fouls = df.loc[df["is_foul"] & df["foul_reason"].notna()]
    if fouls.empty:
        return {}
    counts = fouls["foul_reason"].value_counts()
    known = [reason.value for reason in FoulReason]
    ordered = [reason for reason in known if reason in counts.index]
    ordered += sorted(reason for reason in counts.index if reason not in known)
    return {reason: int(counts[reason]) for reason in ordered}


def compute_weekly_volume(records: Sequence[ThrowInput], week_start: str | None = None) -> dict[date, int]:
    """Count every throw, fouls included, against the start of its week."""
    df = throw_logs_to_dataframe(records)
    if df.empty:
        return {}
    starts = df["day"].map(lambda day: week_start_for(day, week_start))
    volume = df.groupby(starts).size().sort_index()
    return {start: int(count) for start, count in volume.items()}


def compute_summary(records: Sequence[ThrowInput]) -> ThrowSummary:
    df = throw_logs_to_dataframe(records)
    total_throws = int(df.shape[0])
    if not total_throws:
        return ThrowSummary(0, 0, 0, 0.0, 0.0, 0.0)

    distances = df.loc[df["valid"], "distance"]
    total_fouls = int(df["is_foul"].sum())
    return ThrowSummary(
        total_throws=total_throws,
        valid_throws=int(distances.shape[0]),
        total_fouls=total_fouls,
        foul_rate_pct=round(total_fouls / total_throws * 100, 2),
        best_distance=float(distances.max()) if not distances.empty else 0.0,
        average_distance=round(float(distances.mean()), 2) if not distances.empty else 0.0,
    )


def compute_recent_logs(
    records: Sequence[ThrowInput],
    *,
    limit: int = RECENT_LOG_LIMIT,
    athlete_labels: Mapping[str, str] | None = None,
    drill_labels: Mapping[str, str] | None = None,
) -> list[RecentThrow]:
    """Newest ``limit`` throws with display labels; unknown ids fall back to the raw id."""
    zone = _configured_timezone()
    rows = [row for row in (_normalise_row(item, zone) for item in records) if row is not None]
    rows.sort(key=lambda row: (row["created_at"], row["throw_number"]), reverse=True)
    athletes = athlete_labels or {}
    drills = drill_labels or {}
    recent: list[RecentThrow] = []
    for row in rows[: max(limit, 0)]:
        if row["is_foul"]:
            status = FOUL_REASON_LABELS.get(row["foul_reason"] or FoulReason.OTHER.value, row["foul_reason"])
        elif row["distance"] is None:
            status = "Incomplete"
        else:
            status = "Valid"
        recent.append(
            RecentThrow(
                id=row["id"],
                created_at=row["created_at"],
                athlete_id=row["athlete_id"],
                athlete_label=athletes.get(row["athlete_id"] or "") or row["athlete_id"] or "",
                drill_label=drills.get(row["drill_id"] or "") or row["drill_id"] or "",
                distance=row["distance"],
                is_foul=row["is_foul"],
                status=status,
            )
        )
    return recent


def build_chart_series(
    records: Sequence[ThrowInput],
    window_days: int | None = None,
    athlete_id: str | None = None,
    *,
    now: datetime | None = None,
    week_start: str | None = None,
    athlete_labels: Mapping[str, str] | None = None,
    drill_labels: Mapping[str, str] | None = None,
) -> ReportSnapshot:
    """Filter once, then derive every chart series and the summary from the same rows."""
    days = get_config().default_window_days if window_days is None else window_days
    window = AggregationWindow.last_days(days, now=now)
    scoped = filter_by_window_and_athlete(records, window, athlete_id)
    LOGGER.debug("Building report over %d of %d throw logs (%d days)", len(scoped), len(records), days)

    daily_best = compute_daily_best(scoped)
    fouls = compute_foul_histogram(scoped)
    weekly = compute_weekly_volume(scoped, week_start=week_start)

    return ReportSnapshot(
        window_days=int(days),
        athlete_id=athlete_id,
        window=window,
        distance_progression=ChartSeries(
            title="Best Daily Distance (m)",
            labels=[day.isoformat() for day in daily_best],
            values=list(daily_best.values()),
        ),
        foul_breakdown=ChartSeries(
            title="Foul Analysis",
            labels=[FOUL_REASON_LABELS.get(reason, reason) for reason in fouls],
            values=[float(count) for count in fouls.values()],
        ),
        weekly_volume=ChartSeries(
            title="Total Throws",
            labels=[f"Week of {start.isoformat()}" for start in weekly],
            values=[float(count) for count in weekly.values()],
        ),
        summary=compute_summary(scoped),
        recent_logs=tuple(
            compute_recent_logs(scoped, athlete_labels=athlete_labels, drill_labels=drill_labels)
        ),
    )
