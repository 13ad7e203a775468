"""
Historical metric aggregation and cached forecasts for the admin dashboard.
"""
import logging
import time
from collections import defaultdict
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cache import TTLCache
from database import Customer, Order, Payment, utcnow
from forecasting import DataPoint, forecast, forecast_many, future_periods
from roles import Capability, require_capability
from schemas import PredictionsResponse

PREDICTIONS_CACHE_KEY = "predictions"
MONTHLY_HORIZON = 6
YEARLY_HORIZON = 3
# "verified" is a legacy spelling of "completed"
SETTLED_PAYMENT_STATUSES = ("completed", "verified")


def monthly_series(rows: Iterable[Tuple[datetime, float]]) -> List[DataPoint]:
    """Sum values per YYYY-MM, filling months without data with zero."""
    totals = defaultdict(float)
    for ts, value in rows:
        if ts is not None:
            totals[ts.strftime("%Y-%m")] += float(value)
    if not totals:
        return []
    periods = sorted(totals)
    first, last = periods[0], periods[-1]
    labels = [first]
    while labels[-1] != last:
        labels.extend(future_periods(labels[-1], 1))
    return [DataPoint(period=p, value=round(totals.get(p, 0.0), 2)) for p in labels]


def yearly_series(rows: Iterable[Tuple[datetime, float]]) -> List[DataPoint]:
    totals = defaultdict(float)
    for ts, value in rows:
        if ts is not None:
            totals[ts.year] += float(value)
    if not totals:
        return []
    years = range(min(totals), max(totals) + 1)
    return [DataPoint(period=str(y), value=round(totals.get(y, 0.0), 2)) for y in years]


async def _load_history(session: AsyncSession):
    revenue = await session.execute(
        select(Payment.verified_at, Payment.amount)
        .where(Payment.status.in_(SETTLED_PAYMENT_STATUSES), Payment.verified_at.isnot(None))
    )
    orders = await session.execute(select(Order.created_at))
    customers = await session.execute(select(Customer.created_at))
    revenue_rows = [(ts, amount) for ts, amount in revenue.all()]
    return (
        revenue_rows,
        [(ts, 1) for (ts,) in orders.all()],
        [(ts, 1) for (ts,) in customers.all()],
    )


async def get_predictions(session: AsyncSession, cache: TTLCache, acting_user,
                          now: Optional[datetime] = None) -> PredictionsResponse:
    """Forecast revenue, orders and new customers; results are cached for the cache's TTL."""
    require_capability(acting_user, Capability.VIEW_ANALYTICS)
    cached = cache.get(PREDICTIONS_CACHE_KEY)
    if cached is not None:
        return cached

    start_time = time.time()
    revenue_rows, order_rows, customer_rows = await _load_history(session)
    datasets = {
        "revenue": monthly_series(revenue_rows),
        "orders": monthly_series(order_rows),
        "customers": monthly_series(customer_rows),
    }
    result = PredictionsResponse(
        forecasts=forecast_many(datasets, MONTHLY_HORIZON),
        yearly_forecasts={"revenue": forecast(yearly_series(revenue_rows), YEARLY_HORIZON)},
        generated_at=now or utcnow(),
        models_used={"statistical": "Holt linear smoothing + linear regression"},
    )
    cache.set(PREDICTIONS_CACHE_KEY, result)

    elapsed = time.time() - start_time
    logging.info(f"Predictions generated from {sum(len(d) for d in datasets.values())} monthly points (took {elapsed:.3f}s)")
    return result
