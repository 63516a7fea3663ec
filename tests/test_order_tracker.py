import pytest

from order_tracker import next_order

pytestmark = pytest.mark.unit


def orders(names):
    counter, previous = 0, None
    for name in names:
        counter = next_order(previous, name, counter)
        previous = name
        yield counter


def test_first_segment_is_zero():
    assert next_order(None, "DTM", 0) == 0


def test_repeats_count_up_from_zero():
    assert list(orders(["DTM"] * 5)) == [0, 1, 2, 3, 4]


def test_different_name_resets():
    assert list(orders(["DTM", "DTM", "CAS", "DTM"])) == [0, 1, 0, 0]


def test_stale_counter_resets_on_new_name():
    assert next_order("REF", "DTM", 7) == 0


def test_reset_previous_name_starts_over():
    """The dispatcher clears the previous name on every loop change."""
    assert next_order(None, "N1", 3) == 0
