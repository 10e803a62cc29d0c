from .domain.aggregator import CostAggregator
from .domain.forecaster import BudgetForecaster

__all__ = ["CostAggregator", "BudgetForecaster"]
