"""
Commission Calculator Tests.
"""

import pytest
from decimal import Decimal

from edumarket.app.core.exceptions import InvalidAmountError, InvalidRateError
from edumarket.app.domain.ledger.commission import split, to_money


def test_default_rate_split():
    breakdown = split(Decimal("1000"), Decimal("20"))
    assert breakdown.commission == Decimal("200.00")
    assert breakdown.teacher_share == Decimal("800.00")
    assert breakdown.gross_amount == Decimal("1000.00")
    assert breakdown.commission_rate_used == Decimal("20")


def test_commission_rounds_half_up():
    # 33.33 * 15% = 4.9995
    breakdown = split("33.33", "15")
    assert breakdown.commission == Decimal("5.00")
    assert breakdown.teacher_share == Decimal("28.33")


@pytest.mark.parametrize("gross,rate", [
    ("0.01", "50"),
    ("99.99", "12.5"),
    ("1234.56", "7.25"),
    ("10", "33.33"),
])
def test_parts_always_sum_to_gross(gross, rate):
    breakdown = split(gross, rate)
    assert breakdown.commission + breakdown.teacher_share == breakdown.gross_amount
    assert breakdown.commission >= 0
    assert breakdown.teacher_share >= 0


def test_zero_and_full_rate():
    assert split("250", "0").teacher_share == Decimal("250.00")
    full = split("250", "100")
    assert full.commission == Decimal("250.00")
    assert full.teacher_share == Decimal("0.00")


@pytest.mark.parametrize("rate", ["-1", "100.01", "NaN", "abc"])
def test_rate_out_of_range(rate):
    with pytest.raises(InvalidRateError):
        split("100", rate)


@pytest.mark.parametrize("gross", ["0", "-5", "Infinity"])
def test_non_positive_gross(gross):
    with pytest.raises(InvalidAmountError):
        split(gross, "20")


def test_to_money_quantizes():
    assert to_money("10.005") == Decimal("10.01")
    assert to_money(3) == Decimal("3.00")


def test_breakdown_as_dict():
    assert split("1000", "20").as_dict() == {
        "gross_amount": "1000.00",
        "commission": "200.00",
        "teacher_share": "800.00",
        "commission_rate_used": "20",
    }
