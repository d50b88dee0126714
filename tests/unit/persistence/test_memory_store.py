"""Tests for the in-memory signal store."""

from dataclasses import replace

import pytest

from src.infrastructure.persistence.memory_store import InMemorySignalStore


class TestInMemorySignalStore:
    @pytest.mark.asyncio
    async def test_persist_assigns_distinct_ids(self, sample_signal) -> None:
        store = InMemorySignalStore()
        first = replace(sample_signal, id=None)
        second = replace(sample_signal, id=None)

        first_id = await store.persist(first)
        second_id = await store.persist(second)

        assert first_id and second_id and first_id != second_id
        assert first.id == first_id

    @pytest.mark.asyncio
    async def test_list_recent_newest_first_with_filters(self, sample_signal) -> None:
        store = InMemorySignalStore()
        for i, instrument in enumerate(["RELIANCE", "TCS", "RELIANCE"]):
            await store.persist(replace(sample_signal, id=None, instrument_id=instrument, price=float(i)))

        recent = await store.list_recent()
        assert [s.price for s in recent] == [2.0, 1.0, 0.0]

        reliance = await store.list_recent(limit=1, instrument_id="RELIANCE")
        assert [s.price for s in reliance] == [2.0]
        assert await store.list_recent(strategy_id="other") == []

    @pytest.mark.asyncio
    async def test_dismiss(self, sample_signal) -> None:
        store = InMemorySignalStore()
        signal_id = await store.persist(replace(sample_signal, id=None))

        assert await store.dismiss(signal_id)
        assert (await store.list_recent())[0].dismissed
        assert not await store.dismiss("missing")

    @pytest.mark.asyncio
    async def test_max_signals_trims_oldest(self, sample_signal) -> None:
        store = InMemorySignalStore(max_signals=2)
        for i in range(3):
            await store.persist(replace(sample_signal, id=None, price=float(i)))
        assert len(store) == 2
        assert [s.price for s in await store.list_recent()] == [2.0, 1.0]
