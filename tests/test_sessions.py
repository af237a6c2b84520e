"""Tests for the live session registry."""
import pytest

from errors import AttemptNotFound, PersistenceError
from schemas import AttemptState
from sessions import SessionRegistry
from settings import Settings
from tests.conftest import make_quiz


@pytest.fixture
def registry(store, tracker):
    return SessionRegistry(
        store,
        tracker,
        Settings(database_url=None, answer_write_backoff_seconds=0, timer_interval_seconds=60),
    )


@pytest.mark.asyncio
async def test_submitted_attempts_leave_the_registry(registry, store, two_questions):
    for n in range(5):
        controller = await registry.open(make_quiz(max_attempts=10), two_questions, f"u{n}")
        controller.record_answer("q1", "A")
        await controller.submit()
    assert len(registry) == 0

    await registry.wait_released()
    assert controller.timer is None
    assert registry.writes.pending(controller.attempt_id) == 0
    assert not registry.writes.unsaved(controller.attempt_id)
    assert (await store.get(controller.attempt_id)).is_completed


@pytest.mark.asyncio
async def test_auto_submitted_attempt_is_released(registry, two_questions):
    controller = await registry.open(make_quiz(time_limit_minutes=1), two_questions, "u1")
    assert len(registry) == 1
    for _ in range(60):
        controller.timer.tick()
    await controller.wait_background()
    await registry.wait_released()

    assert controller.state is AttemptState.FINALIZED
    assert not controller.timer.running
    assert len(registry) == 0
    with pytest.raises(AttemptNotFound):
        registry.get(controller.attempt_id, "u1")


@pytest.mark.asyncio
async def test_failed_finalize_keeps_the_session(registry, store, two_questions):
    controller = await registry.open(make_quiz(), two_questions, "u1")
    store.fail_finalize = 1
    with pytest.raises(PersistenceError):
        await controller.submit()
    assert registry.get(controller.attempt_id, "u1") is controller

    await controller.submit()
    assert len(registry) == 0
    await registry.close_all()


@pytest.mark.asyncio
async def test_close_and_owner_check(registry, two_questions):
    controller = await registry.open(make_quiz(), two_questions, "u1")
    with pytest.raises(AttemptNotFound):
        registry.get(controller.attempt_id, "u2")
    closed = await registry.close(controller.attempt_id, "u1")
    assert closed.state is AttemptState.IN_PROGRESS
    assert len(registry) == 0
