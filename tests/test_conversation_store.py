"""Behavior tests for conversation eviction and per-conversation locking."""

from __future__ import annotations

import asyncio

import pytest

from agent.conversation import Conversation
from agent.conversation_store import ConversationStore


class _FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_least_recently_used_entry_is_evicted_first() -> None:
    store = ConversationStore(max_entries=2, idle_timeout_seconds=0)
    store.put(Conversation(id="a"))
    store.put(Conversation(id="b"))
    assert store.get("a") is not None
    store.put(Conversation(id="c"))

    assert "b" not in store
    assert store.ids() == ["a", "c"]


def test_put_overwrites_existing_entry() -> None:
    store = ConversationStore(max_entries=5, idle_timeout_seconds=0)
    store.put(Conversation(id="a", context={"v": 1}))
    store.put(Conversation(id="a", context={"v": 2}))
    assert len(store) == 1
    assert store.get("a").context == {"v": 2}


def test_idle_entries_expire() -> None:
    clock = _FakeClock()
    store = ConversationStore(max_entries=5, idle_timeout_seconds=60, clock=clock)
    store.put(Conversation(id="old"))
    clock.now = 30
    store.put(Conversation(id="new"))

    clock.now = 61
    assert store.evict_expired() == ["old"]
    assert store.get("new") is not None
    clock.now = 200
    assert store.get("new") is None
    assert len(store) == 0


def test_access_refreshes_idle_timer() -> None:
    clock = _FakeClock()
    store = ConversationStore(max_entries=5, idle_timeout_seconds=60, clock=clock)
    store.put(Conversation(id="a"))
    clock.now = 50
    assert store.get("a") is not None
    clock.now = 100
    assert store.get("a") is not None


def test_zero_timeout_disables_expiry() -> None:
    clock = _FakeClock()
    store = ConversationStore(max_entries=5, idle_timeout_seconds=0, clock=clock)
    store.put(Conversation(id="a"))
    clock.now = 10 ** 9
    assert store.evict_expired() == []
    assert store.get("a") is not None


@pytest.mark.asyncio
async def test_busy_conversation_is_never_evicted() -> None:
    clock = _FakeClock()
    store = ConversationStore(max_entries=1, idle_timeout_seconds=10, clock=clock)
    store.put(Conversation(id="busy"))

    async with store.lock("busy"):
        clock.now = 100
        assert store.evict_expired() == []
        store.put(Conversation(id="other"))
        assert "busy" in store
        assert store.get("busy") is not None

    store.put(Conversation(id="third"))
    assert "busy" not in store


@pytest.mark.asyncio
async def test_same_id_is_serialized_and_distinct_ids_run_concurrently() -> None:
    store = ConversationStore(max_entries=5, idle_timeout_seconds=0)
    order: list[str] = []

    async def work(cid: str, tag: str) -> None:
        async with store.lock(cid):
            order.append(f"{tag}-start")
            await asyncio.sleep(0.01)
            order.append(f"{tag}-end")

    await asyncio.gather(work("a", "a1"), work("a", "a2"))
    assert order == ["a1-start", "a1-end", "a2-start", "a2-end"]

    order.clear()
    await asyncio.gather(work("a", "a"), work("b", "b"))
    assert order[:2] == ["a-start", "b-start"]


def test_delete() -> None:
    store = ConversationStore(max_entries=5, idle_timeout_seconds=0)
    store.put(Conversation(id="a"))
    assert store.delete("a") is True
    assert store.delete("a") is False
    assert store.get("a") is None
