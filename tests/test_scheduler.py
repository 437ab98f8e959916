"""
Unit tests for per-user schedule management.

Most tests mock the poller; the store is real so identity checks behave as
in production. TestEngine runs the real poller over mocked mail.tm and
Telegram. Intervals are kept short so ticks happen within a test.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock, call

from mailrelay.core.exceptions import MailboxAuthenticationError, MonitorNotFoundError
from mailrelay.monitor.poller import InboxPoller
from mailrelay.monitor.scheduler import MonitorScheduler
from mailrelay.monitor.store import CredentialStore
from tests.factories import MailTmTestFactory


def _stats(**overrides):
    stats = {"checked": 0, "new": 0, "notified": 0, "failed": 0, "retry_token": None}
    stats.update(overrides)
    return stats


async def _wait_until(predicate, timeout=2.0):
    """Poll predicate until true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def store():
    return CredentialStore()


@pytest.fixture
def mock_poller(store):
    poller = Mock()
    poller.store = store
    poller.check_inbox = AsyncMock(return_value=_stats())
    return poller


@pytest.fixture
def make_scheduler(mock_poller, store):
    """Build a scheduler and shut it down after the test."""
    created = []

    def _make(poll_interval=60, retry_delay=0.01, shutdown_grace=1):
        scheduler = MonitorScheduler(
            mock_poller,
            store,
            poll_interval=poll_interval,
            retry_delay=retry_delay,
            shutdown_grace=shutdown_grace,
        )
        created.append(scheduler)
        return scheduler

    yield _make

    for scheduler in created:
        for monitor in scheduler.store.clear():
            monitor.cancel()


class TestStartStop:
    """Test registering and removing monitors."""

    @pytest.mark.asyncio
    async def test_start_registers_and_ticks_immediately(self, make_scheduler, mock_poller, store):
        scheduler = make_scheduler()

        monitor = scheduler.start(7, "a@x.com", "tok1", "pw")

        assert store.get(7) is monitor
        assert monitor.last_seen_count == 0
        await _wait_until(lambda: mock_poller.check_inbox.await_count == 1)
        assert mock_poller.check_inbox.await_args.args[0] is monitor
        assert scheduler.status(7)["active"] is True

        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_ticks_repeat_every_interval(self, make_scheduler, mock_poller):
        scheduler = make_scheduler(poll_interval=0.01)

        scheduler.start(7, "a@x.com", "tok1")

        await _wait_until(lambda: mock_poller.check_inbox.await_count >= 3)
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_start_replaces_existing_monitor(self, make_scheduler, store):
        scheduler = make_scheduler()
        first = scheduler.start(7, "a@x.com", "tok1")
        first.last_seen_count = 4

        second = scheduler.start(7, "b@x.com", "tok9")

        assert first.cancelled is True
        assert store.get(7) is second
        assert len(store) == 1
        status = scheduler.status(7)
        assert status["mail_address"] == "b@x.com"
        assert status["message_count"] == 0

        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_stop_cancels_schedule(self, make_scheduler, store):
        scheduler = make_scheduler()
        monitor = scheduler.start(7, "a@x.com", "tok1")

        assert scheduler.stop(7) is True

        assert store.get(7) is None
        assert monitor.cancelled is True
        await _wait_until(lambda: monitor.schedule_handle.done())
        assert scheduler.status(7) == {"active": False, "mail_address": None, "message_count": 0}

    @pytest.mark.asyncio
    async def test_stop_unknown_user(self, make_scheduler):
        scheduler = make_scheduler()

        assert scheduler.stop(99) is False

    @pytest.mark.asyncio
    async def test_no_ticks_after_stop(self, make_scheduler, mock_poller):
        scheduler = make_scheduler(poll_interval=0.01)
        scheduler.start(7, "a@x.com", "tok1")
        await _wait_until(lambda: mock_poller.check_inbox.await_count >= 1)

        scheduler.stop(7)
        await asyncio.sleep(0.02)
        calls = mock_poller.check_inbox.await_count
        await asyncio.sleep(0.05)

        assert mock_poller.check_inbox.await_count == calls


class TestStatus:
    """Test status and listing."""

    @pytest.mark.asyncio
    async def test_list_active(self, make_scheduler):
        scheduler = make_scheduler()
        scheduler.start(1, "a@x.com", "tok1")
        scheduler.start(2, "b@x.com", "tok2")

        users = {entry["user_id"]: entry for entry in scheduler.list_active()}

        assert set(users) == {1, 2}
        assert users[2]["mail_address"] == "b@x.com"
        assert users[1]["active"] is True
        assert scheduler.active_count == 2

        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_list_empty(self, make_scheduler):
        scheduler = make_scheduler()

        assert scheduler.list_active() == []
        assert scheduler.active_count == 0


class TestForcePoll:
    """Test on-demand ticks."""

    @pytest.mark.asyncio
    async def test_force_poll_unknown_user(self, make_scheduler):
        scheduler = make_scheduler()

        with pytest.raises(MonitorNotFoundError):
            await scheduler.force_poll(99)

    @pytest.mark.asyncio
    async def test_force_poll_returns_stats(self, make_scheduler, mock_poller):
        scheduler = make_scheduler()
        scheduler.start(7, "a@x.com", "tok1")
        await _wait_until(lambda: mock_poller.check_inbox.await_count == 1)
        mock_poller.check_inbox.return_value = _stats(checked=3, new=1, notified=1)

        stats = await scheduler.force_poll(7)

        assert stats["new"] == 1
        assert mock_poller.check_inbox.await_count == 2

        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_ticks_for_one_user_do_not_overlap(self, make_scheduler, mock_poller):
        scheduler = make_scheduler()
        running = 0
        peak = 0

        async def slow_check(monitor, token=None, allow_refresh=True):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.03)
            running -= 1
            return _stats()

        mock_poller.check_inbox.side_effect = slow_check
        scheduler.start(7, "a@x.com", "tok1")
        await _wait_until(lambda: running == 1)

        await scheduler.force_poll(7)

        assert peak == 1
        assert mock_poller.check_inbox.await_count == 2

        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_users_tick_concurrently(self, make_scheduler, mock_poller):
        scheduler = make_scheduler()
        running = 0
        peak = 0

        async def slow_check(monitor, token=None, allow_refresh=True):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.05)
            running -= 1
            return _stats()

        mock_poller.check_inbox.side_effect = slow_check
        scheduler.start(1, "a@x.com", "tok1")
        scheduler.start(2, "b@x.com", "tok2")

        await _wait_until(lambda: mock_poller.check_inbox.await_count == 2)
        assert peak == 2

        await scheduler.shutdown()


class TestRetryAfterRefresh:
    """Test the one-shot retry scheduled after a token refresh."""

    @pytest.mark.asyncio
    async def test_retry_uses_refreshed_token_once(self, make_scheduler, mock_poller):
        scheduler = make_scheduler(retry_delay=0.01)
        mock_poller.check_inbox.side_effect = [_stats(checked=None, retry_token="tok2"), _stats()]

        monitor = scheduler.start(7, "a@x.com", "tok1", "pw")

        await _wait_until(lambda: mock_poller.check_inbox.await_count == 2)
        retry_call = mock_poller.check_inbox.await_args_list[1]
        assert retry_call.args[0] is monitor
        assert retry_call.kwargs == {"token": "tok2", "allow_refresh": False}

        await asyncio.sleep(0.03)
        assert mock_poller.check_inbox.await_count == 2

        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_retry_skipped_after_stop(self, make_scheduler, mock_poller):
        scheduler = make_scheduler(retry_delay=0.05)
        mock_poller.check_inbox.return_value = _stats(checked=None, retry_token="tok2")

        monitor = scheduler.start(7, "a@x.com", "tok1", "pw")
        await _wait_until(lambda: monitor.retry_handle is not None)
        scheduler.stop(7)
        await asyncio.sleep(0.08)

        assert mock_poller.check_inbox.await_count == 1
        assert monitor.retry_handle.cancelled()


class TestShutdown:
    """Test graceful shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_clears_all_monitors(self, make_scheduler, store):
        scheduler = make_scheduler()
        first = scheduler.start(1, "a@x.com", "tok1")
        second = scheduler.start(2, "b@x.com", "tok2")

        await scheduler.shutdown()

        assert len(store) == 0
        assert first.cancelled and second.cancelled
        assert scheduler.list_active() == []

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_in_flight_tick(self, make_scheduler, mock_poller):
        scheduler = make_scheduler()
        started = asyncio.Event()
        finished = []

        async def slow_check(monitor, token=None, allow_refresh=True):
            started.set()
            await asyncio.sleep(0.05)
            finished.append(monitor.user_id)
            return _stats()

        mock_poller.check_inbox.side_effect = slow_check
        scheduler.start(7, "a@x.com", "tok1")
        await started.wait()

        await scheduler.shutdown()

        assert finished == [7]

    @pytest.mark.asyncio
    async def test_shutdown_gives_up_after_grace(self, make_scheduler, mock_poller):
        scheduler = make_scheduler(shutdown_grace=0.02)
        started = asyncio.Event()

        async def hung_check(monitor, token=None, allow_refresh=True):
            started.set()
            await asyncio.sleep(10)
            return _stats()

        mock_poller.check_inbox.side_effect = hung_check
        scheduler.start(7, "a@x.com", "tok1")
        await started.wait()

        await asyncio.wait_for(scheduler.shutdown(), timeout=1)

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_manual_check(self, make_scheduler, mock_poller):
        scheduler = make_scheduler()
        scheduler.start(7, "a@x.com", "tok1")
        await _wait_until(lambda: mock_poller.check_inbox.await_count == 1)
        started = asyncio.Event()
        finished = []

        async def slow_check(monitor, token=None, allow_refresh=True):
            started.set()
            await asyncio.sleep(0.05)
            finished.append(monitor.user_id)
            return _stats()

        mock_poller.check_inbox.side_effect = slow_check
        manual = asyncio.get_running_loop().create_task(scheduler.force_poll(7))
        await started.wait()

        await scheduler.shutdown()

        assert finished == [7]
        assert (await manual)["new"] == 0


class TestTickFailures:
    """Test that a failing tick does not end the user's schedule."""

    @pytest.mark.asyncio
    async def test_schedule_survives_tick_error(self, make_scheduler, mock_poller):
        scheduler = make_scheduler(poll_interval=0.01)
        mock_poller.check_inbox.side_effect = [RuntimeError("boom"), _stats(), _stats(), _stats(), _stats()]

        scheduler.start(7, "a@x.com", "tok1")

        await _wait_until(lambda: mock_poller.check_inbox.await_count >= 3)
        assert scheduler.status(7)["active"] is True

        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_force_poll_propagates_tick_error(self, make_scheduler, mock_poller):
        scheduler = make_scheduler()
        scheduler.start(7, "a@x.com", "tok1")
        await _wait_until(lambda: mock_poller.check_inbox.await_count == 1)
        mock_poller.check_inbox.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await scheduler.force_poll(7)

        assert scheduler.status(7)["active"] is True

        await scheduler.shutdown()


@pytest.fixture
def mock_client():
    client = Mock()
    client.list_messages = AsyncMock(return_value=[])
    client.get_message = AsyncMock(return_value=MailTmTestFactory.create_message_detail())
    client.issue_token = AsyncMock(return_value="tok2")
    return client


@pytest.fixture
def mock_notifier():
    notifier = Mock()
    notifier.send = AsyncMock(return_value=True)
    return notifier


@pytest.fixture
def engine(mock_client, mock_notifier, store):
    """Real poller and scheduler over mocked mail.tm and Telegram."""
    poller = InboxPoller(mock_client, mock_notifier, store)
    scheduler = MonitorScheduler(poller, store, poll_interval=60, retry_delay=0.01, shutdown_grace=1)
    yield scheduler
    for monitor in store.clear():
        monitor.cancel()


class TestEngine:
    """End-to-end ticks through the real poller."""

    @pytest.mark.asyncio
    async def test_refresh_then_retry_updates_count(self, engine, mock_client, mock_notifier):
        mock_client.list_messages.side_effect = [
            MailboxAuthenticationError("expired", status_code=401),
            MailTmTestFactory.create_mailbox(2),
        ]

        engine.start(7, "a@x.com", "tok1", "pw")

        await _wait_until(lambda: engine.status(7)["message_count"] == 2)
        assert mock_client.list_messages.await_args_list == [call("tok1"), call("tok2")]
        mock_client.issue_token.assert_awaited_once_with("a@x.com", "pw")
        assert mock_notifier.send.await_count == 2
        assert engine.store.get(7).access_token == "tok2"

        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_malformed_detail_keeps_schedule_alive(self, engine, mock_client, mock_notifier):
        engine.poll_interval = 0.01
        mock_client.list_messages.return_value = MailTmTestFactory.create_mailbox(1)
        mock_client.get_message.return_value = ["not", "a", "dict"]

        engine.start(7, "a@x.com", "tok1")

        await _wait_until(lambda: mock_client.list_messages.await_count >= 3)
        status = engine.status(7)
        assert status["active"] is True
        assert status["message_count"] == 1
        mock_notifier.send.assert_not_awaited()

        await engine.shutdown()
