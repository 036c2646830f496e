import pytest

from core.trading.models import Category, CategoryExposureCaps
from services.rebalancer.allocation import (
    CategoryAllocation,
    calculate_allocation_band,
    calculate_relative_diff,
    is_sell_amount_sufficient,
    resolve_category_exposure_cap,
    should_reallocate,
)


def test_allocation_band_has_a_floor():
    assert calculate_allocation_band(0.5, 0.01, 0.1) == pytest.approx(0.05)
    assert calculate_allocation_band(0.05, 0.01, 0.1) == pytest.approx(0.01)


def test_should_reallocate_compares_against_band():
    assert should_reallocate(0.5, 0.04, 0.01, 0.1) is False
    assert should_reallocate(0.5, 0.05, 0.01, 0.1) is True
    assert should_reallocate(0.5, -0.06, 0.01, 0.1) is True


@pytest.mark.parametrize("target,current,expected", [
    (0.3, 0.2, 0.5),
    (0.3, 0.0, 0.3),
    (0.1, 0.2, -0.5),
    (0.0, 0.4, -1.0),
])
def test_relative_diff(target, current, expected):
    assert calculate_relative_diff(target, current) == pytest.approx(expected)


def test_category_cap_resolution():
    caps = CategoryExposureCaps(coin_major=0.7, coin_minor=0.2, nasdaq=1.5)

    assert resolve_category_exposure_cap(Category.COIN_MAJOR, None) == 1.0
    assert resolve_category_exposure_cap(Category.COIN_MAJOR, caps) == pytest.approx(0.7)
    assert resolve_category_exposure_cap(Category.COIN_MINOR, caps) == pytest.approx(0.2)
    assert resolve_category_exposure_cap(Category.NASDAQ, caps) == 1.0


class TestSellAmountSufficient:
    def test_unknown_values_pass(self):
        assert is_sell_amount_sufficient("BTC/KRW", -0.5, 5000, None) is True
        assert is_sell_amount_sufficient("BTC/KRW", -0.5, 5000, {"ETH/KRW": 1.0}) is True

    def test_non_positive_value_fails(self):
        assert is_sell_amount_sufficient("BTC/KRW", -0.5, 5000, {"BTC/KRW": 0.0}) is False

    def test_small_sell_fails(self):
        assert is_sell_amount_sufficient("BTC/KRW", -0.25, 5000, {"BTC/KRW": 10_000}) is False

    def test_full_sell_passes(self):
        assert is_sell_amount_sufficient("BTC/KRW", -1.0, 5000, {"BTC/KRW": 10_000}) is True


class TestCategoryAllocation:
    def test_reservation_counts_only_after_commit(self):
        allocation = CategoryAllocation(caps=CategoryExposureCaps(coin_major=0.6))

        reservation = allocation.reserve(Category.COIN_MAJOR, 0.5)
        assert reservation.target_weight == pytest.approx(0.5)
        assert allocation.committed(Category.COIN_MAJOR) == 0.0

        reservation.commit()
        assert allocation.committed(Category.COIN_MAJOR) == pytest.approx(0.5)

        assert allocation.reserve(Category.COIN_MAJOR, 0.5).target_weight == pytest.approx(0.1)

    def test_uncommitted_reservation_leaves_room(self):
        allocation = CategoryAllocation(caps=CategoryExposureCaps(coin_minor=0.2))

        allocation.reserve(Category.COIN_MINOR, 0.2)
        assert allocation.reserve(Category.COIN_MINOR, 0.2).target_weight == pytest.approx(0.2)

    def test_categories_are_independent(self):
        allocation = CategoryAllocation(caps=CategoryExposureCaps(coin_major=0.3, coin_minor=0.3))

        allocation.reserve(Category.COIN_MAJOR, 0.3).commit()

        assert allocation.reserve(Category.COIN_MINOR, 0.3).target_weight == pytest.approx(0.3)
        assert allocation.reserve(Category.COIN_MAJOR, 0.3).target_weight == 0.0

    def test_no_caps_means_full_room(self):
        allocation = CategoryAllocation()
        assert allocation.reserve(Category.NASDAQ, 0.9).target_weight == pytest.approx(0.9)
