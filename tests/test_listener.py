"""Tests for the change-feed listener and its cursor."""

import pytest

from npmsync.errors.exceptions import ChangeFeedExhaustedError, UpstreamError
from npmsync.registry.changes import ChangeFeedClient
from npmsync.registry.results import RetryPolicy
from npmsync.repositories.sync_repo import SyncCursorRepository
from npmsync.workers.listener import FEED_NAME, ChangeListener
from npmsync.workers.queue import SYNC_QUEUE, InMemoryJobQueue


@pytest.fixture
def make_listener(registry_client, session_factory, fake_registry):
    async def feed_goes_down(delay):
        # The poll after the first page fails, ending the run
        fake_registry.changes_failures.append(500)

    def _make(commit_every=2):
        feed = ChangeFeedClient(
            registry_client,
            RetryPolicy(max_retries=0, base_delay=1.0, max_delay=30.0),
            page_size=100,
            sleep=feed_goes_down,
        )
        return ChangeListener(feed, registry_client, InMemoryJobQueue(SYNC_QUEUE), session_factory, commit_every)

    return _make


async def _stored_cursor(session_factory):
    async with session_factory() as session:
        return await SyncCursorRepository(session).get_sequence(FEED_NAME)


@pytest.mark.asyncio
async def test_initial_cursor_falls_back_to_registry_head(make_listener, fake_registry):
    fake_registry.update_seq = 4242
    assert await make_listener().initial_cursor() == 4242


@pytest.mark.asyncio
async def test_initial_cursor_prefers_stored_sequence(make_listener, session_factory):
    async with session_factory() as session:
        await SyncCursorRepository(session).save(FEED_NAME, 17)
        await session.commit()
    assert await make_listener().initial_cursor() == 17


@pytest.mark.asyncio
async def test_unreachable_registry_head_raises(make_listener, fake_registry):
    fake_registry.head_status = 503
    with pytest.raises(UpstreamError) as excinfo:
        await make_listener().initial_cursor()
    assert excinfo.value.code == "REGISTRY_UNAVAILABLE"


@pytest.mark.asyncio
async def test_run_queues_events_and_persists_cursor(make_listener, fake_registry, session_factory):
    fake_registry.update_seq = 100
    fake_registry.changes = [
        {"seq": 99, "id": "already-seen"},
        {"seq": 101, "id": "react"},
        {"seq": 102, "id": "lodash"},
        {"seq": 103, "id": "gone", "deleted": True},
    ]
    listener = make_listener(commit_every=2)

    with pytest.raises(ChangeFeedExhaustedError):
        await listener.run()

    jobs = listener.sync_queue.pending_payloads()
    assert [(j.package_name, j.sequence_id, j.deleted) for j in jobs] == [
        ("react", 101, False), ("lodash", 102, False), ("gone", 103, True),
    ]
    assert await _stored_cursor(session_factory) == 103


@pytest.mark.asyncio
async def test_restart_resumes_from_saved_cursor(make_listener, fake_registry, session_factory):
    fake_registry.update_seq = 100
    fake_registry.changes = [{"seq": 101, "id": "react"}]
    with pytest.raises(ChangeFeedExhaustedError):
        await make_listener().run()

    fake_registry.changes.append({"seq": 102, "id": "chalk"})
    listener = make_listener()
    with pytest.raises(ChangeFeedExhaustedError):
        await listener.run()

    assert [j.package_name for j in listener.sync_queue.pending_payloads()] == ["chalk"]
    assert await _stored_cursor(session_factory) == 102
