"""Linear depletion forecasting from a usage history series."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Sequence

import numpy as np

from quota_sentinel.core import PredictionMethod, PredictionResult, UsageDataPoint
from quota_sentinel.core.config import PredictionConfig
from quota_sentinel.history.store import utc_now

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400.0


class DepletionPredictor:
    """Estimates when an account's remaining quota reaches zero.

    The daily usage rate is derived either from the first and last points
    (``ENDPOINTS``) or from an ordinary least squares fit of remaining against
    elapsed days (``LEAST_SQUARES``). A prediction is unavailable when there
    are fewer than two points, when the series spans less than
    ``min_elapsed``, or when remaining is not decreasing.

    Parameters
    ----------
    method : PredictionMethod
        Rate estimator.
    min_elapsed : timedelta
        Minimum span between the earliest and latest points.
    clock : Callable[[], datetime]
        Source of "now"; the depletion date is ``now + days_until_depletion``.
    """

    def __init__(
        self,
        method: PredictionMethod = PredictionMethod.ENDPOINTS,
        min_elapsed: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if min_elapsed <= timedelta(0):
            raise ValueError(f"min_elapsed must be positive, got {min_elapsed}")
        self.method = PredictionMethod(method)
        self.min_elapsed = min_elapsed
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: PredictionConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> DepletionPredictor:
        return cls(
            method=config.method,
            min_elapsed=timedelta(minutes=config.min_elapsed_minutes),
            clock=clock,
        )

    def predict(self, series: Sequence[UsageDataPoint]) -> PredictionResult:
        if len(series) < 2:
            return PredictionResult.unavailable("Not enough data points", self.method)

        points = sorted(series, key=lambda p: p.timestamp)
        earliest, latest = points[0], points[-1]
        elapsed = latest.timestamp - earliest.timestamp
        if elapsed < self.min_elapsed:
            return PredictionResult.unavailable("Not enough time elapsed", self.method)

        if self.method == PredictionMethod.LEAST_SQUARES:
            rate = self._least_squares_rate(points)
        else:
            rate = self._endpoints_rate(earliest, latest)

        if rate <= 0:
            return PredictionResult.unavailable("Usage is not decreasing", self.method)

        days = max(latest.remaining, 0.0) / rate
        depletion_date = self._clock() + timedelta(days=days)
        logger.debug(
            "Predicted depletion in %.2f days (rate %.4f/day, method %s)",
            days,
            rate,
            self.method,
        )
        return PredictionResult(
            available=True,
            daily_usage_rate=rate,
            days_until_depletion=days,
            estimated_depletion_date=depletion_date,
            method=self.method,
        )

    @staticmethod
    def _endpoints_rate(earliest: UsageDataPoint, latest: UsageDataPoint) -> float:
        elapsed_days = (latest.timestamp - earliest.timestamp).total_seconds() / SECONDS_PER_DAY
        return (earliest.remaining - latest.remaining) / elapsed_days

    @staticmethod
    def _least_squares_rate(points: Sequence[UsageDataPoint]) -> float:
        origin = points[0].timestamp
        days = np.array(
            [(p.timestamp - origin).total_seconds() / SECONDS_PER_DAY for p in points]
        )
        remaining = np.array([p.remaining for p in points])
        slope, _intercept = np.polyfit(days, remaining, 1)
        return float(-slope)
