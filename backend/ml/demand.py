"""
Demand Forecaster — polynomial regression with an explicit fallback chain.

Each historical order i becomes a feature vector

  [i, seasonal(order_date), trend(i)]

  seasonal: winter 0.0, spring 0.25, summer 0.5, fall 0.75
  trend:    slope of a least-squares line through the 3 actual-demand
            values preceding i (0.0 when fewer than 3 exist)

and a degree-3 polynomial regression of actual demand is fit on those
vectors, then evaluated at [n, seasonal(forecast_date), trend(n)].

Confidence = clamp(1 − MSE / max_demand², 0, 1) over in-sample fits.

Strategies are tried in order; the first usable (finite, non-negative)
estimate wins:

  1. polynomial_regression  — needs ≥ degree + 1 points
  2. moving_average         — mean of the 5 most recent actuals, confidence 0.5
  3. category_default       — per-category constant, confidence 0.3

so a forecast is always a finite, non-negative number.
"""

from __future__ import annotations

import math
import uuid
import warnings
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import NamedTuple, Protocol

import numpy as np
import structlog
from sklearn.linear_model import LinearRegression
from sklearn.preprocessing import PolynomialFeatures

from core.config import Settings
from db.stores import HistoryStore

logger = structlog.get_logger()

SEASON_FEATURES = {"winter": 0.0, "spring": 0.25, "summer": 0.5, "fall": 0.75}

# Cold-start demand per order cycle when a product has no history at all
CATEGORY_DEFAULT_DEMAND = {
    "dairy": 50.0,
    "food": 80.0,
    "beverages": 60.0,
    "produce": 70.0,
    "bakery": 45.0,
    "personal care": 30.0,
    "household": 25.0,
    "pharmaceuticals": 20.0,
}

MOVING_AVERAGE_CONFIDENCE = 0.5
CATEGORY_DEFAULT_CONFIDENCE = 0.3
TREND_WINDOW = 3


def season_for(when: date | datetime) -> str:
    """Meteorological season (northern hemisphere) for a date."""
    month = when.month
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "fall"
    return "winter"


def seasonal_feature(when: date | datetime) -> float:
    return SEASON_FEATURES[season_for(when)]


def trend_feature(demands: Sequence[float], index: int) -> float:
    """Slope over the TREND_WINDOW actual-demand values preceding ``index``."""
    if index < TREND_WINDOW:
        return 0.0
    window = np.asarray(demands[index - TREND_WINDOW : index], dtype=float)
    if len(window) < TREND_WINDOW:
        return 0.0
    slope, _ = np.polyfit(np.arange(TREND_WINDOW, dtype=float), window, 1)
    return float(slope)


class DemandPoint(NamedTuple):
    """One historical observation fed to the forecaster."""

    order_date: datetime
    actual_demand: float


class FeatureVector(NamedTuple):
    time_index: float
    seasonal: float
    trend: float


def build_feature_vectors(points: Sequence[DemandPoint]) -> list[FeatureVector]:
    demands = [p.actual_demand for p in points]
    return [
        FeatureVector(float(i), seasonal_feature(p.order_date), trend_feature(demands, i))
        for i, p in enumerate(points)
    ]


@dataclass(frozen=True)
class DemandEstimate:
    predicted_demand: float
    confidence: float
    method: str
    sample_size: int

    @property
    def usable(self) -> bool:
        return (
            math.isfinite(self.predicted_demand)
            and math.isfinite(self.confidence)
            and self.predicted_demand >= 0
        )

    def as_dict(self) -> dict:
        return {
            "predicted_demand": self.predicted_demand,
            "confidence": self.confidence,
            "method": self.method,
            "sample_size": self.sample_size,
        }


@dataclass(frozen=True)
class ForecastConfig:
    degree: int = 3
    fallback_window: int = 5
    default_demand: float = 25.0

    @classmethod
    def from_settings(cls, settings: Settings) -> ForecastConfig:
        return cls(
            degree=settings.regression_degree,
            fallback_window=settings.fallback_window,
            default_demand=settings.default_category_demand,
        )


class ForecastStrategy(Protocol):
    name: str

    def estimate(
        self,
        points: Sequence[DemandPoint],
        forecast_date: datetime,
        category: str | None,
    ) -> DemandEstimate | None: ...


class PolynomialRegressionStrategy:
    name = "polynomial_regression"

    def __init__(self, degree: int = 3):
        self.degree = degree

    def estimate(self, points, forecast_date, category=None):
        n = len(points)
        if n < self.degree + 1:
            return None

        X = np.asarray(build_feature_vectors(points), dtype=float)
        y = np.asarray([p.actual_demand for p in points], dtype=float)
        demands = y.tolist()
        next_features = np.asarray(
            [[float(n), seasonal_feature(forecast_date), trend_feature(demands, n)]],
            dtype=float,
        )

        poly = PolynomialFeatures(degree=self.degree)
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", category=RuntimeWarning)
                X_poly = poly.fit_transform(X)
                model = LinearRegression().fit(X_poly, y)
                predicted = float(model.predict(poly.transform(next_features))[0])
                fitted = model.predict(X_poly)
                confidence = self._confidence(y, fitted)
        except (np.linalg.LinAlgError, ValueError) as exc:
            logger.warning("demand.regression_failed", error=str(exc), sample_size=n)
            return None

        if not (math.isfinite(predicted) and math.isfinite(confidence)):
            logger.warning(
                "demand.regression_non_finite",
                predicted=str(predicted),
                confidence=str(confidence),
                sample_size=n,
            )
            return None

        return DemandEstimate(
            predicted_demand=max(0.0, predicted),
            confidence=min(1.0, max(0.0, confidence)),
            method=self.name,
            sample_size=n,
        )

    @staticmethod
    def _confidence(actuals: np.ndarray, fitted: np.ndarray) -> float:
        """1 − MSE / max_demand². NaN when max demand is 0 (undefined)."""
        max_demand = float(np.max(actuals))
        if max_demand <= 0:
            return float("nan")
        mse = float(np.mean((actuals - fitted) ** 2))
        return max(0.0, 1.0 - mse / (max_demand * max_demand))


class MovingAverageStrategy:
    name = "moving_average"

    def __init__(self, window: int = 5):
        self.window = window

    def estimate(self, points, forecast_date, category=None):
        if not points:
            return None
        recent = [p.actual_demand for p in points[-self.window :]]
        return DemandEstimate(
            predicted_demand=max(0.0, float(np.mean(recent))),
            confidence=MOVING_AVERAGE_CONFIDENCE,
            method=self.name,
            sample_size=len(recent),
        )


class CategoryDefaultStrategy:
    name = "category_default"

    def __init__(self, defaults: dict[str, float] | None = None, default_demand: float = 25.0):
        self.defaults = CATEGORY_DEFAULT_DEMAND if defaults is None else defaults
        self.default_demand = default_demand

    def estimate(self, points, forecast_date, category=None):
        key = (category or "").strip().lower()
        return DemandEstimate(
            predicted_demand=float(self.defaults.get(key, self.default_demand)),
            confidence=CATEGORY_DEFAULT_CONFIDENCE,
            method=self.name,
            sample_size=0,
        )


def default_chain(config: ForecastConfig) -> list[ForecastStrategy]:
    return [
        PolynomialRegressionStrategy(degree=config.degree),
        MovingAverageStrategy(window=config.fallback_window),
        CategoryDefaultStrategy(default_demand=config.default_demand),
    ]


def forecast_from_history(
    points: Sequence[DemandPoint],
    forecast_date: datetime,
    category: str | None = None,
    chain: Sequence[ForecastStrategy] | None = None,
    config: ForecastConfig | None = None,
) -> DemandEstimate:
    """Run the strategy chain over chronological points; first usable estimate wins."""
    strategies = list(chain) if chain is not None else default_chain(config or ForecastConfig())
    skipped: list[str] = []

    for strategy in strategies:
        estimate = strategy.estimate(points, forecast_date, category)
        if estimate is not None and estimate.usable:
            if skipped:
                logger.warning(
                    "demand.fallback_used",
                    method=estimate.method,
                    skipped=skipped,
                    sample_size=len(points),
                    category=category,
                )
            return estimate
        skipped.append(strategy.name)

    # Only reachable with a custom chain that has no unconditional tail
    logger.error("demand.chain_exhausted", skipped=skipped, sample_size=len(points))
    return DemandEstimate(0.0, 0.0, "none", len(points))


class DemandForecaster:
    """Store-backed wrapper: loads a product's history and runs the chain."""

    def __init__(
        self,
        history_store: HistoryStore,
        config: ForecastConfig | None = None,
        chain: Sequence[ForecastStrategy] | None = None,
    ):
        self.history = history_store
        self.config = config or ForecastConfig()
        self.chain = list(chain) if chain is not None else default_chain(self.config)

    async def load_points(self, product_id: uuid.UUID) -> list[DemandPoint]:
        records = await self.history.list_chronological(product_id)
        return [DemandPoint(r.order_date, float(r.actual_demand)) for r in records]

    async def predict_demand(
        self,
        product_id: uuid.UUID,
        forecast_date: datetime,
        category: str | None = None,
    ) -> DemandEstimate:
        points = await self.load_points(product_id)
        estimate = forecast_from_history(points, forecast_date, category, chain=self.chain)
        logger.debug(
            "demand.forecast",
            product_id=str(product_id),
            method=estimate.method,
            predicted_demand=round(estimate.predicted_demand, 3),
            confidence=round(estimate.confidence, 3),
        )
        return estimate
