"""Tests for bounded trade and order caches."""

from dataclasses import dataclass

import pytest

from unistream.streaming import ArrayCache, ArrayCacheById


@dataclass
class Item:
    id: str
    value: int = 0


class TestArrayCache:
    """Tests for the ring buffer."""

    def test_evicts_oldest(self):
        cache = ArrayCache(3)
        cache.extend([1, 2, 3, 4, 5])
        assert cache.get_all() == [3, 4, 5]
        assert len(cache) == 3

    def test_never_exceeds_capacity(self):
        cache = ArrayCache(10)
        for i in range(1000):
            cache.append(i)
            assert len(cache) <= 10

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            ArrayCache(0)

    def test_get_all_is_a_copy(self):
        cache = ArrayCache(3)
        cache.append(1)
        items = cache.get_all()
        cache.append(2)
        assert items == [1]


class TestArrayCacheById:
    """Tests for the keyed cache used for orders."""

    def test_same_id_replaces_and_moves_to_newest(self):
        cache = ArrayCacheById(3)
        cache.extend([Item("a"), Item("b"), Item("c")])
        cache.append(Item("a", 1))

        assert [i.id for i in cache] == ["b", "c", "a"]
        assert cache.get("a").value == 1
        assert len(cache) == 3

    def test_evicts_oldest_id_when_full(self):
        cache = ArrayCacheById(2)
        cache.extend([Item("a"), Item("b"), Item("c")])
        assert [i.id for i in cache.get_all()] == ["b", "c"]
        assert cache.get("a") is None

    def test_clear(self):
        cache = ArrayCacheById(2)
        cache.append(Item("a"))
        cache.clear()
        assert len(cache) == 0
