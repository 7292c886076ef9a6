from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from order_engine.domain.discount import apply_coupon, coupon_status, is_valid_coupon_code
from order_engine.domain.models import Coupon, DiscountType

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def make_coupon(**fields) -> Coupon:
    data = {
        "code": "SAVE10",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("10"),
        "total_quantity": 100,
        "valid_to": NOW + timedelta(days=30),
    }
    data.update(fields)
    return Coupon(**data)


# ============================================================================
# Discount amounts
# ============================================================================

class TestDiscountAmount:

    def test_percentage(self):
        result = apply_coupon(make_coupon(), Decimal("1000"), NOW)
        assert result.valid
        assert result.discount_amount == Decimal("100.00")
        assert not result.free_shipping

    def test_percentage_rounds_half_up(self):
        result = apply_coupon(make_coupon(discount_value=Decimal("12.5")), Decimal("99.99"), NOW)
        assert result.discount_amount == Decimal("12.50")

    def test_fixed(self):
        result = apply_coupon(make_coupon(discount_type=DiscountType.FIXED, discount_value="150"), "1000", NOW)
        assert result.discount_amount == Decimal("150.00")

    def test_fixed_never_exceeds_subtotal(self):
        result = apply_coupon(make_coupon(discount_type=DiscountType.FIXED, discount_value="150"), "100", NOW)
        assert result.discount_amount == Decimal("100.00")

    def test_percentage_over_hundred_is_capped(self):
        result = apply_coupon(make_coupon(discount_value=Decimal("150")), Decimal("80"), NOW)
        assert result.discount_amount == Decimal("80.00")

    def test_free_shipping(self):
        result = apply_coupon(make_coupon(discount_type=DiscountType.FREE_SHIPPING), Decimal("800"), NOW)
        assert result.valid
        assert result.free_shipping
        assert result.discount_amount == Decimal("0")


# ============================================================================
# Rejections
# ============================================================================

class TestRejections:

    def test_missing_coupon(self):
        result = apply_coupon(None, Decimal("100"), NOW)
        assert not result.valid
        assert result.reason == "Coupon not found"

    def test_inactive(self):
        result = apply_coupon(make_coupon(is_active=False), Decimal("100"), NOW)
        assert result.reason == "Coupon is inactive"

    def test_expiry_is_exclusive(self):
        result = apply_coupon(make_coupon(valid_to=NOW), Decimal("100"), NOW)
        assert result.reason == "Coupon has expired"

    def test_not_valid_yet(self):
        result = apply_coupon(make_coupon(valid_from=NOW + timedelta(hours=1)), Decimal("100"), NOW)
        assert result.reason == "Coupon is not valid yet"

    def test_usage_limit(self):
        result = apply_coupon(make_coupon(usage_limit=5, usage_count=5), Decimal("100"), NOW)
        assert result.reason == "Coupon usage limit reached"

    def test_sold_out(self):
        result = apply_coupon(make_coupon(total_quantity=3, usage_count=3), Decimal("100"), NOW)
        assert result.reason == "Coupon is no longer available"

    def test_per_customer_limit(self):
        coupon = make_coupon(per_user_limit=2)
        assert apply_coupon(coupon, Decimal("100"), NOW, user_usage=1).valid
        result = apply_coupon(coupon, Decimal("100"), NOW, user_usage=2)
        assert result.reason == "Coupon usage limit reached for this customer"

    @pytest.mark.parametrize("subtotal, valid",[("999.99", False), ("1000", True), ("1000.01", True)])
    def test_minimum_order_boundary(self, subtotal, valid):
        result = apply_coupon(make_coupon(min_order_amount=Decimal("1000")), Decimal(subtotal), NOW)
        assert result.valid is valid
        if not valid:
            assert result.reason == "Minimum order amount of 1000.00 not reached"

    def test_first_failing_check_wins(self):
        coupon = make_coupon(is_active=False, valid_to=NOW - timedelta(days=1))
        assert apply_coupon(coupon, Decimal("100"), NOW).reason == "Coupon is inactive"

    def test_naive_validity_dates_are_utc(self):
        coupon = make_coupon(valid_to=datetime(2026, 10, 18, 11, 0))
        assert apply_coupon(coupon, Decimal("100"), NOW).reason == "Coupon has expired"


def test_coupon_status():
    assert coupon_status(make_coupon(), NOW) == "active"
    assert coupon_status(make_coupon(valid_to=NOW - timedelta(seconds=1)), NOW) == "expired"
    assert coupon_status(make_coupon(total_quantity=1, usage_count=1), NOW) == "sold_out"


def test_coupon_code_format():
    assert is_valid_coupon_code("DIWALI-25")
    assert not is_valid_coupon_code("ab")
    assert not is_valid_coupon_code("save 10")
