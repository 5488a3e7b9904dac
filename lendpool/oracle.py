"""
oracle.py - Price feeds with staleness and confidence

Provides the price interface the risk engine values positions against.

Classes:
- PriceQuote: one observation (price, confidence, timestamp)
- PriceOracle: Protocol any feed must satisfy
- StaticPriceOracle: in-memory quotes, updated explicitly
- TimeSeriesPriceOracle: historical quotes, latest at-or-before a timestamp

The engine never takes a quote at face value. fetch_checked_quote() rejects
stale and malformed quotes, and valuation uses the confidence band rather
than the point price:

    price_low  = max(0, price - k * confidence)   (collateral)
    price_high = price + k * confidence           (liabilities)
"""

import math
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

from scipy.special import erfinv

from .core import ZERO, InvalidPrice, StalePrice, to_decimal


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """
    A single price observation.

    Attributes:
        price: Point price in the group's quote currency
        confidence: Half-width of the feed's confidence interval (same units)
        timestamp: When the feed published the observation
    """
    price: Decimal
    confidence: Decimal
    timestamp: datetime

    def __post_init__(self):
        if not isinstance(self.price, Decimal):
            object.__setattr__(self, 'price', to_decimal(self.price))
        if not isinstance(self.confidence, Decimal):
            object.__setattr__(self, 'confidence', to_decimal(self.confidence))

    def age_seconds(self, now: datetime) -> int:
        """Whole seconds since publication; quotes from the future have age 0."""
        return max(int((now - self.timestamp).total_seconds()), 0)

    def price_low(self, k: Decimal) -> Decimal:
        """Lower bound of the confidence band, floored at zero."""
        return max(self.price - k * self.confidence, ZERO)

    def price_high(self, k: Decimal) -> Decimal:
        """Upper bound of the confidence band."""
        return self.price + k * self.confidence

    def scaled(self, factor: Decimal) -> 'PriceQuote':
        """The same quote with price and confidence multiplied by factor."""
        return PriceQuote(self.price * factor, self.confidence * factor, self.timestamp)


@runtime_checkable
class PriceOracle(Protocol):
    """
    Protocol for price feeds.

    get_price() returns the most recent quote the feed has for oracle_ref
    as of `timestamp`, or None if it has none. Staleness is judged by the
    caller, not the feed.
    """

    def get_price(self, oracle_ref: str, timestamp: datetime) -> Optional[PriceQuote]:
        ...


class StaticPriceOracle:
    """
    Oracle holding one current quote per feed.

    Quotes are replaced with set_price(); there is no history. Intended for
    simulations and tests where the caller drives prices explicitly.
    """

    def __init__(self, quotes: Optional[Dict[str, PriceQuote]] = None):
        self.quotes: Dict[str, PriceQuote] = dict(quotes or {})

    def set_price(
        self,
        oracle_ref: str,
        price: Decimal,
        timestamp: datetime,
        confidence: Decimal = ZERO,
    ) -> None:
        """Publish a new quote for oracle_ref."""
        self.quotes[oracle_ref] = PriceQuote(price, confidence, timestamp)

    def remove(self, oracle_ref: str) -> None:
        """Forget a feed so subsequent lookups return None."""
        self.quotes.pop(oracle_ref, None)

    def get_price(self, oracle_ref: str, timestamp: datetime) -> Optional[PriceQuote]:
        return self.quotes.get(oracle_ref)


class TimeSeriesPriceOracle:
    """
    Oracle with historical quotes per feed.

    Returns the latest quote published at or before the requested timestamp.
    Quotes are kept sorted by timestamp, so lookup is a binary search.
    """

    def __init__(self):
        self._quotes: Dict[str, List[PriceQuote]] = {}
        self._timestamps: Dict[str, List[datetime]] = {}

    def add_quote(self, oracle_ref: str, quote: PriceQuote) -> None:
        """Insert a quote, keeping the series ordered by timestamp."""
        times = self._timestamps.setdefault(oracle_ref, [])
        quotes = self._quotes.setdefault(oracle_ref, [])
        idx = bisect_right(times, quote.timestamp)
        times.insert(idx, quote.timestamp)
        quotes.insert(idx, quote)

    def add_series(self, oracle_ref: str,
                   observations: List[Tuple[datetime, Decimal, Decimal]]) -> None:
        """Bulk-load (timestamp, price, confidence) observations."""
        for timestamp, price, confidence in observations:
            self.add_quote(oracle_ref, PriceQuote(price, confidence, timestamp))

    def get_price(self, oracle_ref: str, timestamp: datetime) -> Optional[PriceQuote]:
        times = self._timestamps.get(oracle_ref)
        if not times:
            return None
        idx = bisect_right(times, timestamp)
        if idx == 0:
            return None
        return self._quotes[oracle_ref][idx - 1]


# ============================================================================
# CHECKED ACCESS
# ============================================================================

def fetch_checked_quote(
    oracle: PriceOracle,
    oracle_ref: str,
    now: datetime,
    max_age: int,
) -> PriceQuote:
    """
    Fetch a quote and reject it unless it is fresh and well-formed.

    Raises:
        StalePrice: If no quote exists or it is older than max_age seconds.
        InvalidPrice: If price <= 0 or confidence < 0.
    """
    quote = oracle.get_price(oracle_ref, now)
    if quote is None:
        raise StalePrice(f"no price available for {oracle_ref}")
    age = quote.age_seconds(now)
    if age > max_age:
        raise StalePrice(f"price for {oracle_ref} is {age}s old, max is {max_age}s")
    if not quote.price.is_finite() or quote.price <= 0:
        raise InvalidPrice(f"price for {oracle_ref} must be positive, got {quote.price}")
    if not quote.confidence.is_finite() or quote.confidence < 0:
        raise InvalidPrice(
            f"confidence for {oracle_ref} must be non-negative, got {quote.confidence}"
        )
    return quote


def confidence_multiplier(confidence_level: float) -> Decimal:
    """
    k for a two-sided normal confidence band.

    Example: confidence_multiplier(0.95) -> 1.959964 (approximately)

    Feeds that publish one standard deviation as their confidence map
    directly onto this; the result is rounded to six digits so the engine's
    arithmetic stays decimal.
    """
    if not (0.0 < confidence_level < 1.0):
        raise ValueError(f"confidence_level must be in (0, 1), got {confidence_level}")
    # Two-sided band: P(|Z| <= z) = erf(z / sqrt(2))
    z = math.sqrt(2.0) * float(erfinv(confidence_level))
    return Decimal(str(round(z, 6)))
