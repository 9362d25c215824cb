from decimal import Decimal

from windi.core.money import (
    commission_for,
    normalize_money,
    points_for,
    positive_part,
    to_decimal,
)


def test_commission_rounds_half_up_to_whole_units():
    assert commission_for(Decimal("12999"), Decimal("0.25")) == Decimal("3250")
    assert commission_for(Decimal("16999"), Decimal("0.25")) == Decimal("4250")
    assert commission_for("1002", "0.25") == Decimal("251")


def test_points_are_one_per_hundred():
    assert points_for(Decimal("12999")) == 130
    assert points_for(Decimal("16999")) == 170
    assert points_for(Decimal("49")) == 0
    assert points_for(Decimal("50")) == 1


def test_to_decimal_treats_garbage_as_zero():
    assert to_decimal(None) == Decimal("0")
    assert to_decimal("abc") == Decimal("0")
    assert to_decimal(True) == Decimal("0")
    assert to_decimal("NaN") == Decimal("0")
    assert to_decimal(" 12.5 ") == Decimal("12.5")


def test_normalize_money_keeps_two_decimals():
    assert normalize_money("12999") == Decimal("12999.00")
    assert normalize_money(Decimal("10.005")) == Decimal("10.01")
    assert str(normalize_money(3250)) == "3250.00"


def test_positive_part():
    assert positive_part(Decimal("-3")) == Decimal("0")
    assert positive_part(Decimal("3")) == Decimal("3")
