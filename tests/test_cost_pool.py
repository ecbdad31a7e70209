import pytest

from podcost.cost_pool import MAX_COST, MIN_COST, CostPool
from podcost.errors import AllocationExhausted, ErrorKind, Requeue


def test_empty_pool_hands_out_the_maximum():
    assert CostPool().find_next_free() == MAX_COST == 2**31 - 1


def test_claimed_values_are_skipped_top_down():
    pool = CostPool()
    pool.add_all([MAX_COST, MAX_COST - 1])
    assert pool.find_next_free() == MAX_COST - 2


def test_gaps_are_filled_before_lower_values():
    pool = CostPool()
    pool.add_all([MAX_COST, MAX_COST - 2])
    assert pool.find_next_free() == MAX_COST - 1


def test_repeated_calls_never_return_the_same_value():
    pool = CostPool(max_value=10, min_value=1)
    seen = [pool.find_next_free() for _ in range(10)]
    assert seen == list(range(10, 0, -1))
    assert len(pool) == 10


def test_none_values_are_ignored():
    pool = CostPool(max_value=5, min_value=1)
    pool.add(None)
    pool.add_all([None, 5])
    assert len(pool) == 1
    assert 5 in pool
    assert pool.find_next_free() == 4


def test_exhausted_range_raises_with_backoff_policy():
    pool = CostPool(max_value=3, min_value=MIN_COST)
    pool.add_all([1, 2, 3])
    with pytest.raises(AllocationExhausted) as ei:
        pool.find_next_free()
    err = ei.value
    assert err.kind is ErrorKind.ALLOCATION_EXHAUSTED
    assert err.requeue is Requeue.BACKOFF
    assert err.context == {"max_value": 3, "min_value": 1, "claimed": 3}


def test_values_outside_range_do_not_count_as_free_slots():
    pool = CostPool(max_value=2, min_value=1)
    pool.add_all([0, -5, 99])
    assert pool.find_next_free() == 2


def test_inverted_range_is_rejected():
    with pytest.raises(ValueError):
        CostPool(max_value=1, min_value=2)
