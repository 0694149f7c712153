import pytest

from chat_core.orchestrator.generation_slot import GenerationSlot


def test_single_slot():
    slot = GenerationSlot()
    session = slot.try_acquire("c-1")
    assert session is not None
    assert slot.active and slot.session is session
    assert slot.try_acquire("c-2") is None
    slot.release(session)
    assert not slot.active and slot.session is None


def test_hold_releases_on_error():
    slot = GenerationSlot()
    session = slot.try_acquire()
    with pytest.raises(RuntimeError):
        with slot.hold(session):
            session.append("partial")
            raise RuntimeError("boom")
    assert not slot.active
    assert slot.try_acquire() is not None


def test_release_of_stale_session_is_ignored():
    slot = GenerationSlot()
    first = slot.try_acquire()
    slot.release(first)
    second = slot.try_acquire()
    slot.release(first)
    assert slot.session is second
