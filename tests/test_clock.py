import pytest

from skew.clock import Tick


def test_value_is_masked_to_31_bits():
    assert Tick(0x80000005).value == 5
    assert Tick(0xFFFFFFFF).value == 0x7FFFFFFF


def test_now_fits_in_31_bits():
    tick = Tick.now()
    assert 0 <= tick.value <= 0x7FFFFFFF


def test_now_is_monotonic_enough():
    first = Tick.now()
    second = Tick.now()
    assert second.gte(first)


@pytest.mark.parametrize("a,b", [(5, 3), (100, 1000), (0, 0x7FFFFFFF), (12345, 12345)])
def test_diff_is_antisymmetric(a, b):
    assert Tick(a).diff(Tick(b)) == -Tick(b).diff(Tick(a))


def test_diff_of_equal_ticks_is_zero():
    assert Tick(77).diff(Tick(77)) == 0


def test_diff_across_wrap():
    assert Tick(0).diff(Tick(0x7FFFFFFF)) == 1
    assert Tick(0).gt(Tick(0x7FFFFFFF))


def test_gt_and_gte():
    later = Tick(200)
    earlier = Tick(100)
    assert later.gt(earlier)
    assert not earlier.gt(later)
    assert later.gte(Tick(200))
    assert not Tick(200).gt(Tick(200))


def test_ticks_compare_by_value():
    assert Tick(10) == Tick(10 | 0x80000000)