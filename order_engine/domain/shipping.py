import logging
from decimal import Decimal
from typing import Iterable, Optional
from pydantic import BaseModel, Field

from order_engine.domain.money import ZERO, to_amount

logger = logging.getLogger(__name__)

FREE_SHIPPING_THRESHOLD = Decimal("1000")
FLAT_SHIPPING_FEE = Decimal("100")


def _key(value: Optional[str]) -> str:
    return (value or "").strip().lower()


class ShippingRate(BaseModel):
    """Value Object: configured fee for a city"""
    country: str
    state: str
    city: str
    price: Decimal = Field(ge=0)


class RateTable:
    """Shipping rates indexed by country, then state, then city."""

    def __init__(self, rates: Iterable[ShippingRate] = ()):
        self._rates: dict[str, dict[str, dict[str, Decimal]]] = {}
        for rate in rates:
            self.add(rate)

    def add(self, rate: ShippingRate) -> None:
        states = self._rates.setdefault(_key(rate.country), {})
        cities = states.setdefault(_key(rate.state), {})
        cities[_key(rate.city)] = rate.price

    def lookup(self, country: str, state: str, city: str) -> Optional[Decimal]:
        states = self._rates.get(_key(country))
        if not states:
            return None
        cities = states.get(_key(state))
        if not cities:
            return None
        return cities.get(_key(city))

    def __len__(self) -> int:
        return sum(len(cities) for states in self._rates.values() for cities in states.values())


def calculate_shipping(
    country: str,
    state: str,
    city: str,
    subtotal,
    rate_table: Optional[RateTable],
    free_shipping: bool = False,
    threshold: Decimal = FREE_SHIPPING_THRESHOLD,
    flat_fee: Decimal = FLAT_SHIPPING_FEE,
) -> Decimal:
    """Shipping fee for an address; unknown addresses fall back to the flat rule."""
    if free_shipping:
        return ZERO

    if rate_table is not None and country and state and city:
        rate = rate_table.lookup(country, state, city)
        if rate is not None:
            return rate
        logger.debug(f"No shipping rate for {city}, {state}, {country}, using flat fee rule")

    return ZERO if to_amount(subtotal) > threshold else to_amount(flat_fee)
