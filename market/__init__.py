from .feed import MarketFeed
from .types import REQUIRED_BAR_COLUMNS, PriceBar, PriceSeries, validate_bars_df

__all__ = [
    "MarketFeed",
    "PriceBar",
    "PriceSeries",
    "REQUIRED_BAR_COLUMNS",
    "validate_bars_df",
]
