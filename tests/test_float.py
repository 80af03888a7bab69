import struct

import pytest

from avsampler.float import format_terse


def _f32(value):
    return struct.unpack("f", struct.pack("f", value))[0]


def test_half_value_keeps_one_decimal():
    assert format_terse(37.5) == "37.5"


def test_whole_number_has_no_decimal_point():
    assert format_terse(30.0) == "30"


@pytest.mark.parametrize("value", [1.0, 12.0, 63.0, 100.0, 0.0])
def test_whole_numbers_never_have_a_point(value):
    out = format_terse(value)
    assert "." not in out
    assert float(out) == value


@pytest.mark.parametrize("value", [0.1, 20.3, 35.7, 1.9])
def test_tenths_use_one_decimal(value):
    out = format_terse(value)
    assert len(out.split(".")[1]) == 1
    assert abs(float(out) - value) < 1e-6


@pytest.mark.parametrize("value", [0.25, 30.05, 12.75])
def test_hundredths_use_two_decimals(value):
    out = format_terse(value)
    assert len(out.split(".")[1]) == 2
    assert abs(float(out) - value) < 1e-6


@pytest.mark.parametrize("value", [0.123456, 3.14159, 27.3333])
def test_fallback_round_trips_as_f32(value):
    out = format_terse(value)
    assert "e" not in out.lower()
    assert _f32(float(out)) == _f32(value)


def test_infinity():
    assert format_terse(float("inf")) == "inf"