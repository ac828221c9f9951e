"""
Order reward — scores one realized order for the bandit.

  reward = 0.7 × demand_accuracy + 0.3 × profit_margin

  demand_accuracy = 1 − |predicted − actual| / actual   (not clamped; large misses go negative)
  profit_margin   = (revenue − order_cost − holding_cost) / revenue
"""

import math

ACCURACY_WEIGHT = 0.7
PROFIT_WEIGHT = 0.3


def calculate_reward(
    predicted_demand: float,
    actual_demand: float,
    order_cost: float,
    revenue: float,
    holding_cost: float,
) -> float:
    """Blend demand accuracy and profit margin into a scalar reward.

    Returns 0.0 when the ratios are undefined (zero actual demand or zero
    revenue) or when the inputs produce a non-finite value.
    """
    if not actual_demand or not revenue:
        return 0.0

    demand_accuracy = 1 - abs(predicted_demand - actual_demand) / actual_demand
    profit_margin = (revenue - order_cost - holding_cost) / revenue

    reward = ACCURACY_WEIGHT * demand_accuracy + PROFIT_WEIGHT * profit_margin
    return sanitize_reward(reward)


def sanitize_reward(value: float | None) -> float:
    """Coerce NaN/±inf (or anything non-numeric) to 0.0."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0
