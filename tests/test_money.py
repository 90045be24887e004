from decimal import Decimal

import pytest

from splitsaathi.money import (
    absorb_remainder,
    allocate,
    amounts_close,
    format_amount,
    from_cents,
    percent_close,
    split_equally,
    to_cents,
    to_decimal,
    to_number,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (10, Decimal("10.00")),
        (10.005, Decimal("10.01")),
        ("  42.5 ", Decimal("42.50")),
        (Decimal("0.014"), Decimal("0.01")),
    ],
)
def test_to_decimal_quantizes_to_cents(raw, expected):
    assert to_decimal(raw) == expected


@pytest.mark.parametrize("raw", ["abc", None, True, float("nan"), "inf", [1]])
def test_to_decimal_rejects_non_numbers(raw):
    with pytest.raises(ValueError):
        to_decimal(raw)


def test_to_number_keeps_precision():
    assert to_number("33.3333") == Decimal("33.3333")
    with pytest.raises(ValueError):
        to_number("12%")


def test_cents_conversion():
    assert to_cents(Decimal("12.34")) == 1234
    assert from_cents(1234) == Decimal("12.34")
    assert from_cents(5) == Decimal("0.05")


def test_allocate_gives_leftover_cent_to_first_entry_on_ties():
    assert allocate(Decimal("100.00"), [Decimal(1)] * 3) == [
        Decimal("33.34"),
        Decimal("33.33"),
        Decimal("33.33"),
    ]


def test_allocate_prefers_largest_remainder():
    assert allocate(Decimal("1.00"), [Decimal(1), Decimal(2)]) == [Decimal("0.33"), Decimal("0.67")]


def test_allocate_always_sums_to_amount():
    shares = allocate(Decimal("1.00"), [Decimal(1)] * 6)
    assert shares == [Decimal("0.17")] * 4 + [Decimal("0.16")] * 2
    assert sum(shares) == Decimal("1.00")


def test_allocate_by_weight():
    assert allocate(Decimal("200.00"), [Decimal(70), Decimal(30)]) == [Decimal("140.00"), Decimal("60.00")]
    assert allocate(Decimal("10.00"), [Decimal(3), Decimal(1)]) == [Decimal("7.50"), Decimal("2.50")]


def test_allocate_is_deterministic():
    weights = [Decimal(1), Decimal(2), Decimal(4)]
    assert allocate(Decimal("100.00"), weights) == allocate(Decimal("100.00"), weights)
    assert allocate(Decimal("100.00"), weights) == [Decimal("14.29"), Decimal("28.57"), Decimal("57.14")]


@pytest.mark.parametrize(
    "weights",
    [[], [Decimal(0), Decimal(0)], [Decimal(1), Decimal(-1)]],
)
def test_allocate_rejects_bad_weights(weights):
    with pytest.raises(ValueError):
        allocate(Decimal("10.00"), weights)


def test_split_equally():
    assert split_equally(Decimal("10.00"), 3) == [Decimal("3.34"), Decimal("3.33"), Decimal("3.33")]
    with pytest.raises(ValueError):
        split_equally(Decimal("10.00"), 0)


def test_tolerance_comparisons_are_inclusive():
    assert amounts_close(Decimal("99.99"), Decimal("100.00"))
    assert not amounts_close(Decimal("99.98"), Decimal("100.00"))
    assert percent_close(Decimal("99.95"))
    assert percent_close(Decimal("100.1"))
    assert not percent_close(Decimal("99.8"))


def test_format_amount():
    assert format_amount(Decimal("42.5")) == "42.50"
    assert format_amount(Decimal("0.005")) == "0.01"


def test_absorb_remainder_adjusts_one_entry():
    values = [Decimal("33.33"), Decimal("33.33"), Decimal("33.33")]
    assert absorb_remainder(Decimal("100.00"), values) == [
        Decimal("33.34"),
        Decimal("33.33"),
        Decimal("33.33"),
    ]
    assert absorb_remainder(Decimal("10.00"), [Decimal("4.00"), Decimal("6.01")]) == [
        Decimal("4.00"),
        Decimal("6.00"),
    ]
    assert absorb_remainder(Decimal("10.00"), [Decimal("4.00"), Decimal("6.00")]) == [
        Decimal("4.00"),
        Decimal("6.00"),
    ]
    assert absorb_remainder(Decimal("10.00"), []) == []
