# Allocation band math and category-capped target reservation
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from core.trading.models import Category, CategoryExposureCaps
from core.utils.numeric import clamp01, is_finite_number


def calculate_allocation_band(target_weight: float, min_allocation_band: float,
                              allocation_band_ratio: float) -> float:
    return max(min_allocation_band, target_weight * allocation_band_ratio)


def should_reallocate(target_weight: float, delta_weight: float, min_allocation_band: float,
                      allocation_band_ratio: float) -> bool:
    """Skip micro-adjustments unless the gap clears the dynamic band."""
    return abs(delta_weight) >= calculate_allocation_band(target_weight, min_allocation_band, allocation_band_ratio)


def calculate_relative_diff(target_weight: float, current_weight: float) -> float:
    """Signed change relative to the current weight (or absolute when not held)."""
    return (target_weight - current_weight) / (current_weight or 1)


def resolve_category_exposure_cap(category: Category, caps: Optional[CategoryExposureCaps]) -> float:
    if caps is None:
        return 1.0
    if category == Category.COIN_MAJOR:
        return clamp01(caps.coin_major)
    if category == Category.COIN_MINOR:
        return clamp01(caps.coin_minor)
    if category == Category.NASDAQ:
        return clamp01(caps.nasdaq)
    return 1.0


def is_sell_amount_sufficient(symbol: str, diff: float, minimum_trade_price: float,
                              tradable_market_value_map: Optional[Mapping[str, float]]) -> bool:
    """True unless the known tradable value of ``symbol`` times ``|diff|`` is below the minimum."""
    if tradable_market_value_map is None:
        return True
    value = tradable_market_value_map.get(symbol)
    if value is None:
        return True
    if not is_finite_number(value) or value <= 0:
        return False
    return value * abs(diff) >= minimum_trade_price


@dataclass
class CategoryReservation:
    """Provisional category allocation; only counts once committed."""
    category: Category
    target_weight: float
    _allocation: "CategoryAllocation" = field(repr=False)
    _base: float = field(repr=False, default=0.0)

    def commit(self) -> None:
        self._allocation.allocated[self.category] = self._base + self.target_weight


@dataclass
class CategoryAllocation:
    """Per-call committed weight by category. Single writer, never shared across calls."""
    caps: Optional[CategoryExposureCaps] = None
    allocated: Dict[Category, float] = field(default_factory=dict)

    def reserve(self, category: Category, uncapped_target_weight: float) -> CategoryReservation:
        cap = resolve_category_exposure_cap(category, self.caps)
        already_allocated = self.allocated.get(category, 0.0)
        remaining = max(0.0, cap - already_allocated)
        return CategoryReservation(
            category=category,
            target_weight=clamp01(min(uncapped_target_weight, remaining)),
            _allocation=self,
            _base=already_allocated,
        )

    def committed(self, category: Category) -> float:
        return self.allocated.get(category, 0.0)
