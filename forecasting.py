"""
Statistical forecasting for monthly and yearly business metrics.

Combines a least-squares trend line, additive seasonality detection and
Holt's linear exponential smoothing. Everything here is pure and
deterministic, so callers are free to memoize results.
"""
import math
import re
from typing import Dict, List, Optional, Sequence
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

SEASON_LENGTH = 12
ALPHA = 0.35
BETA = 0.15
Z_90 = 1.645


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DataPoint(_Model):
    period: str
    value: float


class Forecast(_Model):
    period: str
    predicted: float
    lower: float  # 90% confidence bounds
    upper: float


class ForecastResult(_Model):
    forecasts: List[Forecast] = []
    trend: str = "stable"  # growing | declining | stable
    trend_strength: float = 0.0
    seasonality: bool = False
    avg_growth_rate: float = 0.0  # percent per period
    r2: float = 0.0


def linear_regression(ys: Sequence[float]):
    """Return (slope, intercept, r2) of ys against 0..n-1."""
    n = len(ys)
    if n < 2:
        return 0.0, (ys[0] if ys else 0.0), 0.0
    mean_x = (n - 1) / 2
    mean_y = sum(ys) / n
    sxx = sum((x - mean_x) ** 2 for x in range(n))
    sxy = sum((x - mean_x) * (y - mean_y) for x, y in enumerate(ys))
    if sxx == 0:
        return 0.0, mean_y, 0.0
    slope = sxy / sxx
    intercept = mean_y - slope * mean_x

    ss_tot = sum((y - mean_y) ** 2 for y in ys)
    ss_res = sum((y - (intercept + slope * x)) ** 2 for x, y in enumerate(ys))
    r2 = 1 - ss_res / ss_tot if ss_tot > 0 else 0.0
    return slope, intercept, r2


def detect_seasonality(values: Sequence[float], period: int = SEASON_LENGTH) -> Optional[List[float]]:
    """Average detrended seasonal offsets, or None when there is no significant cycle."""
    if len(values) < period * 2:
        return None
    slope, intercept, _ = linear_regression(values)
    sums = [0.0] * period
    counts = [0] * period
    for i, v in enumerate(values):
        sums[i % period] += v - (intercept + slope * i)
        counts[i % period] += 1
    seasonal = [s / c if c else 0.0 for s, c in zip(sums, counts)]

    mean = sum(values) / len(values)
    amplitude = math.sqrt(sum(s * s for s in seasonal) / period)
    if amplitude < abs(mean) * 0.05:
        return None
    return seasonal


def holt_smoothing(values: Sequence[float], horizons: int, alpha: float = ALPHA, beta: float = BETA) -> List[float]:
    if len(values) < 2:
        return [max(0.0, values[0] if values else 0.0)] * horizons
    level = values[0]
    trend = values[1] - values[0]
    for v in values[1:]:
        prev_level = level
        level = alpha * v + (1 - alpha) * (prev_level + trend)
        trend = beta * (level - prev_level) + (1 - beta) * trend
    return [max(0.0, level + trend * h) for h in range(1, horizons + 1)]


def confidence_bounds(historical: Sequence[float], predicted: Sequence[float], z: float = Z_90):
    recent = list(historical[-6:])
    mean = sum(recent) / len(recent)
    std = math.sqrt(sum((v - mean) ** 2 for v in recent) / len(recent))
    lower, upper = [], []
    for i, p in enumerate(predicted):
        spread = std * z * math.sqrt(1 + i * 0.15)
        lower.append(max(0.0, p - spread))
        upper.append(p + spread)
    return lower, upper


_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")
_YEAR_RE = re.compile(r"^\d{4}$")


def future_periods(last_period: str, count: int) -> List[str]:
    """Continue a YYYY-MM or YYYY label sequence."""
    match = _MONTH_RE.match(last_period)
    if match:
        year, month = int(match.group(1)), int(match.group(2))
        labels = []
        for _ in range(count):
            month += 1
            if month > 12:
                month = 1
                year += 1
            labels.append(f"{year}-{month:02d}")
        return labels
    if _YEAR_RE.match(last_period):
        return [str(int(last_period) + h) for h in range(1, count + 1)]
    return [f"{last_period}+{h}" for h in range(1, count + 1)]


def _classify_trend(slope: float, r2: float, mean: float) -> str:
    slope_percent = slope / mean * 100 if mean > 0 else 0.0
    if slope_percent > 1 and r2 > 0.2:
        return "growing"
    if slope_percent < -1 and r2 > 0.2:
        return "declining"
    return "stable"


def _average_growth_rate(values: Sequence[float]) -> float:
    rates = [
        (cur - prev) / prev * 100
        for prev, cur in zip(values, values[1:])
        if prev > 0
    ]
    return sum(rates) / len(rates) if rates else 0.0


def forecast(points: Sequence[DataPoint], horizons: int = 6) -> ForecastResult:
    """Project ``horizons`` periods past the last point.

    Fewer than two points yield an empty, stable result.
    """
    if horizons < 1:
        raise ValueError("horizons must be at least 1")
    if len(points) < 2:
        return ForecastResult()

    values = [float(p.value) for p in points]
    slope, _, r2 = linear_regression(values)

    seasonal = detect_seasonality(values)
    adjusted = values
    if seasonal:
        adjusted = [v - seasonal[i % SEASON_LENGTH] for i, v in enumerate(values)]

    predicted = holt_smoothing(adjusted, horizons)
    if seasonal:
        start = len(values)
        predicted = [max(0.0, p + seasonal[(start + i) % SEASON_LENGTH]) for i, p in enumerate(predicted)]

    lower, upper = confidence_bounds(values, predicted)
    labels = future_periods(points[-1].period, horizons)

    mean = sum(values) / len(values)
    return ForecastResult(
        forecasts=[
            Forecast(period=label, predicted=round(p, 2), lower=round(lo, 2), upper=round(hi, 2))
            for label, p, lo, hi in zip(labels, predicted, lower, upper)
        ],
        trend=_classify_trend(slope, r2, mean),
        trend_strength=min(1.0, abs(r2)),
        seasonality=seasonal is not None,
        avg_growth_rate=round(_average_growth_rate(values), 2),
        r2=round(r2, 3),
    )


def forecast_many(datasets: Dict[str, Sequence[DataPoint]], horizons: int = 6) -> Dict[str, ForecastResult]:
    return {name: forecast(points, horizons) for name, points in datasets.items()}
