#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
podcost/cost_pool.py — Per-zone pool of claimed deletion-cost values.

A pool is built fresh for every allocation from the values already claimed by
same-zone siblings (persisted or pending) and handed out top-down:

    pool = CostPool()
    pool.add_all([MAX_COST, MAX_COST - 1])
    pool.find_next_free()   # -> MAX_COST - 2, now claimed too

Search order is fixed (highest free value first) so allocation is
deterministic for a given claimed set.
"""

from __future__ import annotations

from typing import Iterable, Optional, Set

from .errors import AllocationExhausted

MAX_COST = 2**31 - 1
MIN_COST = 1


class CostPool:
    def __init__(self, max_value: int = MAX_COST, min_value: int = MIN_COST):
        if min_value > max_value:
            raise ValueError(f"empty cost range [{min_value}, {max_value}]")
        self.max_value = int(max_value)
        self.min_value = int(min_value)
        self._used: Set[int] = set()

    def add(self, value: Optional[int]) -> None:
        if value is None:
            return
        self._used.add(int(value))

    def add_all(self, values: Iterable[Optional[int]]) -> None:
        for v in values:
            self.add(v)

    def find_next_free(self) -> int:
        """Claim and return the highest unclaimed value in range."""
        value = self.max_value
        while value >= self.min_value:
            if value not in self._used:
                self._used.add(value)
                return value
            value -= 1
        raise AllocationExhausted(
            max_value=self.max_value,
            min_value=self.min_value,
            claimed=len(self._used),
        )

    def __contains__(self, value: object) -> bool:
        return value in self._used

    def __len__(self) -> int:
        return len(self._used)
