import asyncio

import pytest

from conftest import FixedTitleProvider
from chat_core.domain.models import Message
from chat_core.orchestrator.title_scheduler import TitleScheduler, is_degenerate, normalize_title


def transcript():
    return [
        Message(id="m1", conversation_id="c-1", role="user", content="How do I bake bread?"),
        Message(id="m2", conversation_id="c-1", role="assistant", content="Start with flour."),
    ]


def test_normalize_title():
    assert normalize_title('  "Baking   bread."  ') == "Baking bread"
    assert normalize_title("“Sourdough tips”!") == "Sourdough tips"
    assert len(normalize_title("x" * 80)) == 50
    assert normalize_title("") == ""


def test_is_degenerate():
    assert is_degenerate("", "Untitled Conversation")
    assert is_degenerate("untitled conversation", "Untitled Conversation")
    assert is_degenerate("New Conversation", "Untitled Conversation")
    assert not is_degenerate("Baking bread", "Untitled Conversation")


@pytest.mark.asyncio
async def test_schedules_once_per_conversation(store):
    await store.ensure_conversation("c-1", None, "Untitled Conversation", None)
    titles = FixedTitleProvider("Baking bread")
    applied = []
    scheduler = TitleScheduler(titles, store, delay=0, on_title=lambda cid, t: applied.append((cid, t)))

    assert scheduler.schedule("c-1", transcript()) is not None
    assert scheduler.pending("c-1")
    assert scheduler.schedule("c-1", transcript()) is None
    await scheduler.drain()

    assert titles.calls == 1
    assert applied == [("c-1", "Baking bread")]
    assert store.conversations["c-1"].title == "Baking bread"
    assert not scheduler.pending("c-1")


@pytest.mark.asyncio
async def test_failure_is_abandoned_silently(store):
    await store.ensure_conversation("c-1", None, "Untitled Conversation", None)
    titles = FixedTitleProvider(error=RuntimeError("provider down"))
    applied = []
    scheduler = TitleScheduler(titles, store, delay=0, on_title=lambda cid, t: applied.append(t))

    scheduler.schedule("c-1", transcript())
    await scheduler.drain()
    # no retry on a second request
    scheduler.schedule("c-1", transcript())
    await scheduler.drain()

    assert titles.calls == 1
    assert applied == []
    assert store.calls["update_conversation_title"] == 0


@pytest.mark.asyncio
async def test_store_failure_is_swallowed(store):
    titles = FixedTitleProvider("Baking bread")
    scheduler = TitleScheduler(titles, store, delay=0)
    task = scheduler.schedule("c-missing", transcript())
    await task
    assert task.exception() is None


@pytest.mark.asyncio
async def test_runs_detached_after_delay(store):
    await store.ensure_conversation("c-1", None, "Untitled Conversation", None)
    titles = FixedTitleProvider("Baking bread")
    scheduler = TitleScheduler(titles, store, delay=0.05)
    scheduler.schedule("c-1", transcript())
    await asyncio.sleep(0)
    assert titles.calls == 0
    await scheduler.drain()
    assert titles.calls == 1


@pytest.mark.asyncio
async def test_forget_allows_a_new_attempt(store):
    await store.ensure_conversation("c-1", None, "Untitled Conversation", None)
    titles = FixedTitleProvider("Baking bread")
    scheduler = TitleScheduler(titles, store, delay=0)
    scheduler.schedule("c-1", transcript())
    await scheduler.drain()
    scheduler.forget("c-1")
    assert scheduler.schedule("c-1", transcript()) is not None
    await scheduler.drain()
    assert titles.calls == 2
