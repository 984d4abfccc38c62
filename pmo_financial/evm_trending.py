"""
EVM Trend Analysis
Linear regression over snapshot history, moving averages, anomaly detection
and baseline comparison
"""

from __future__ import annotations

import re
import statistics
from typing import TYPE_CHECKING, Any, Dict, List, Sequence, Tuple, Union

from .errors import ValidationError, wraps_errors

if TYPE_CHECKING:
    from .evm_snapshots import SnapshotService
    from .models import EVMSnapshot

TREND_THRESHOLD = 0.01
ANOMALY_METRICS = ("cpi", "spi", "cv", "sv")

_HEALTH_SCORE_RE = re.compile(r"score:\s*(\d+)")

Point = Union[Dict[str, float], Tuple[float, float], Sequence[float]]


def _xy(point: Point) -> Tuple[float, float]:
    if isinstance(point, dict):
        return float(point["x"]), float(point["y"])
    x, y = point
    return float(x), float(y)


def calculate_linear_regression(points: Sequence[Point]) -> Dict[str, float]:
    """
    Ordinary least squares fit of y on x

    Args:
        points: ``{"x", "y"}`` dicts or ``(x, y)`` pairs

    Returns:
        Dict with slope, intercept and r2 (clamped to 0..1), rounded to 4 decimals
    """
    pairs = [_xy(point) for point in points]
    n = len(pairs)
    if n == 0:
        return {"slope": 0.0, "intercept": 0.0, "r2": 0.0}
    if n == 1:
        return {"slope": 0.0, "intercept": round(pairs[0][1], 4), "r2": 0.0}

    mean_x = statistics.fmean(x for x, _ in pairs)
    mean_y = statistics.fmean(y for _, y in pairs)

    numerator = sum((x - mean_x) * (y - mean_y) for x, y in pairs)
    denominator = sum((x - mean_x) ** 2 for x, _ in pairs)

    slope = 0.0 if denominator == 0 else numerator / denominator
    intercept = mean_y - slope * mean_x

    ss_res = sum((y - (slope * x + intercept)) ** 2 for x, y in pairs)
    ss_tot = sum((y - mean_y) ** 2 for _, y in pairs)
    r2 = 0.0 if ss_tot == 0 else 1 - ss_res / ss_tot

    return {
        "slope": round(slope, 4),
        "intercept": round(intercept, 4),
        "r2": round(max(0.0, min(1.0, r2)), 4),
    }


def calculate_moving_average(values: Sequence[float], window_size: int = 3) -> List[float]:
    """Trailing moving average; early points average over the values available so far."""

    if not values:
        return []
    window = max(1, int(window_size))
    averages = []
    for index in range(len(values)):
        chunk = values[max(0, index - window + 1):index + 1]
        averages.append(round(statistics.fmean(chunk), 4))
    return averages


def classify_trend(slope: float) -> str:
    if slope > TREND_THRESHOLD:
        return "improving"
    if slope < -TREND_THRESHOLD:
        return "declining"
    return "stable"


def population_stddev(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return statistics.pstdev(values)


def extract_health_score(notes: str) -> int:
    """Read the health score recorded in snapshot notes; 50 when absent."""

    match = _HEALTH_SCORE_RE.search(notes or "")
    return int(match.group(1)) if match else 50


def analyze_index_series(snapshots: Sequence["EVMSnapshot"], metric: str) -> Dict[str, Any]:
    """Trend statistics for ``cpi`` or ``spi`` over snapshots in append order."""

    current_key = f"current_{metric}"
    average_key = f"average_{metric}"
    if not snapshots:
        return {
            "trend": "stable",
            "slope": 0.0,
            "r2": 0.0,
            current_key: 0.0,
            average_key: 0.0,
            "current_value": 0.0,
            "average_value": 0.0,
            "volatility": 0.0,
        }

    values = [getattr(snapshot, metric) for snapshot in snapshots]
    regression = calculate_linear_regression([(index, value) for index, value in enumerate(values)])
    current = values[-1]
    average = statistics.fmean(values)
    return {
        "trend": classify_trend(regression["slope"]),
        "slope": regression["slope"],
        "r2": regression["r2"],
        current_key: round(current, 4),
        average_key: round(average, 4),
        "current_value": round(current, 4),
        "average_value": round(average, 4),
        "volatility": round(population_stddev(values), 4),
    }


def find_anomalies(snapshots: Sequence["EVMSnapshot"], metric: str, threshold: float = 2.0) -> List[Dict[str, Any]]:
    """Flag snapshots whose ``metric`` lies more than ``threshold`` standard deviations from the mean."""

    if metric not in ANOMALY_METRICS:
        raise ValidationError(f"Unsupported metric '{metric}'. Expected one of: {', '.join(ANOMALY_METRICS)}")
    if len(snapshots) < 3:
        return []

    values = [getattr(snapshot, metric) for snapshot in snapshots]
    mean = statistics.fmean(values)
    stddev = population_stddev(values)

    anomalies = []
    for snapshot, value in zip(snapshots, values):
        z_score = 0.0 if stddev == 0 else (value - mean) / stddev
        if abs(z_score) > threshold:
            anomalies.append(
                {
                    "snapshot_id": snapshot.snapshot_id,
                    "date": snapshot.snapshot_date,
                    "value": round(value, 4),
                    "z_score": round(z_score, 2),
                    "deviation": "high" if z_score > 0 else "low",
                }
            )
    return anomalies


def _overall_trend(cpi_trend: str, spi_trend: str) -> str:
    if cpi_trend == "improving" and spi_trend in ("improving", "stable"):
        return "improving"
    if spi_trend == "improving" and cpi_trend in ("improving", "stable"):
        return "improving"
    if "declining" in (cpi_trend, spi_trend):
        return "declining"
    return "stable"


def _risk_level(cpi: Dict[str, Any], spi: Dict[str, Any], overall: str) -> str:
    current_cpi = cpi["current_cpi"]
    current_spi = spi["current_spi"]
    if current_cpi < 0.85 or current_spi < 0.85 or (overall == "declining" and (current_cpi < 0.9 or current_spi < 0.9)):
        return "high"
    if (
        current_cpi < 0.95
        or current_spi < 0.95
        or overall == "declining"
        or cpi["volatility"] > 0.15
        or spi["volatility"] > 0.15
    ):
        return "medium"
    return "low"


def _recommendations(cpi: Dict[str, Any], spi: Dict[str, Any], overall: str, forecast: float) -> List[str]:
    recommendations = []
    if cpi["trend"] == "declining":
        recommendations.append("Cost performance is declining. Review budget allocation and cost controls.")
        if cpi["current_cpi"] < 0.9:
            recommendations.append(
                "Critical: CPI below 0.9 indicates significant cost overruns. Immediate corrective action required."
            )
    if spi["trend"] == "declining":
        recommendations.append("Schedule performance is declining. Review project timeline and resource allocation.")
        if spi["current_spi"] < 0.9:
            recommendations.append(
                "Critical: SPI below 0.9 indicates significant schedule delays. Re-baseline may be necessary."
            )
    if cpi["volatility"] > 0.2 or spi["volatility"] > 0.2:
        recommendations.append(
            "High performance volatility detected. Implement more consistent tracking and control processes."
        )
    if forecast < 60:
        recommendations.append(
            "Health score forecast indicates deteriorating conditions. Proactive intervention recommended."
        )
    if overall == "improving":
        recommendations.append(
            "Performance is improving. Continue current management practices and monitor for sustainability."
        )
    if not recommendations:
        recommendations.append("Performance is stable. Maintain current tracking and control processes.")
    return recommendations


def _change_sentence(label: str, change: float) -> str:
    if change > 0.05:
        return f"{label} performance has improved significantly. "
    if change < -0.05:
        return f"{label} performance has declined significantly. "
    return f"{label} performance is relatively stable. "


class TrendAnalyzer:
    """Trend analysis over a program's snapshot history."""

    def __init__(self, snapshots: "SnapshotService") -> None:
        self.snapshots = snapshots

    @wraps_errors("analyze CPI trend")
    async def analyze_cpi_trend(self, program_id: str, period_months: int = 12) -> Dict[str, Any]:
        history = await self.snapshots.get_snapshot_history(program_id, period_months)
        return analyze_index_series(history, "cpi")

    @wraps_errors("analyze SPI trend")
    async def analyze_spi_trend(self, program_id: str, period_months: int = 12) -> Dict[str, Any]:
        history = await self.snapshots.get_snapshot_history(program_id, period_months)
        return analyze_index_series(history, "spi")

    @wraps_errors("detect anomalies")
    async def detect_anomalies(self, program_id: str, metric: str, threshold: float = 2.0) -> List[Dict[str, Any]]:
        if metric not in ANOMALY_METRICS:
            raise ValidationError(f"Unsupported metric '{metric}'. Expected one of: {', '.join(ANOMALY_METRICS)}")
        history = await self.snapshots.get_snapshot_history(program_id, 12)
        return find_anomalies(history, metric, threshold)

    @wraps_errors("analyze performance trend")
    async def analyze_performance_trend(self, program_id: str, period_months: int = 12) -> Dict[str, Any]:
        """Combine CPI, SPI and health score trends into a risk assessment."""

        history = await self.snapshots.get_snapshot_history(program_id, period_months)
        cpi_analysis = analyze_index_series(history, "cpi")
        spi_analysis = analyze_index_series(history, "spi")

        scores = [extract_health_score(snapshot.notes) for snapshot in history]
        health_regression = calculate_linear_regression(list(enumerate(scores)))
        forecast = health_regression["slope"] * (len(history) - 1 + 3) + health_regression["intercept"]

        overall = _overall_trend(cpi_analysis["trend"], spi_analysis["trend"])
        return {
            "overall_trend": overall,
            "cpi_analysis": cpi_analysis,
            "spi_analysis": spi_analysis,
            "health_trend": {
                "slope": health_regression["slope"],
                "forecast_3_months": round(max(0.0, min(100.0, forecast))),
            },
            "risk_level": _risk_level(cpi_analysis, spi_analysis, overall),
            "recommendations": _recommendations(cpi_analysis, spi_analysis, overall, forecast),
        }

    @wraps_errors("compare to baseline")
    async def compare_to_baseline(self, program_id: str, baseline_snapshot_id: str) -> Dict[str, Any]:
        """Compare the latest snapshot against a baseline snapshot from the last 24 months."""

        history = await self.snapshots.get_snapshot_history(program_id, 24)
        baseline = next((item for item in history if item.snapshot_id == baseline_snapshot_id), None)
        if baseline is None:
            raise ValueError(f"Baseline snapshot {baseline_snapshot_id} not found")
        current = history[-1]

        cpi_change = current.cpi - baseline.cpi
        spi_change = current.spi - baseline.spi
        # SPI slip expressed as a share of a 365 day year
        days_variance = round(((1 - current.spi) - (1 - baseline.spi)) * 365)

        summary = _change_sentence("Cost", cpi_change) + _change_sentence("Schedule", spi_change)
        if abs(days_variance) > 30:
            direction = "behind" if days_variance > 0 else "ahead"
            summary += f"Estimated schedule variance of {abs(days_variance)} days {direction} of baseline."
        else:
            summary += "Schedule is tracking close to baseline."

        return {
            "baseline_snapshot_id": baseline.snapshot_id,
            "current_snapshot_id": current.snapshot_id,
            "cost_variance": round(current.cv - baseline.cv, 2),
            "schedule_variance": round(current.sv - baseline.sv, 2),
            "cpi_change": round(cpi_change, 4),
            "spi_change": round(spi_change, 4),
            "days_variance": days_variance,
            "summary": summary.strip(),
        }
