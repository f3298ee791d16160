"""Tests for ConnectionStatus, Snapshot and mutation outcome classification."""

import asyncio

import pytest

from rebuildx import Async, ConnectionStatus, Snapshot, Streaming, Sync, classify


class TestSnapshot:
    def test_default_is_idle(self):
        s = Snapshot()
        assert s.status is ConnectionStatus.NONE
        assert s.is_idle
        assert not s.has_data
        assert not s.has_error

    def test_has_error_follows_error(self):
        s = Snapshot(ConnectionStatus.DONE, 1, ValueError("boom"))
        assert s.has_error
        assert not s.has_data

    def test_has_data_for_done_and_active(self):
        assert Snapshot(ConnectionStatus.DONE, 1).has_data
        assert Snapshot(ConnectionStatus.ACTIVE, 1).has_data
        assert not Snapshot(ConnectionStatus.WAITING, 1).has_data

    def test_helpers_return_new_snapshots(self):
        s = Snapshot(ConnectionStatus.NONE, 1)
        waiting = s.waiting()
        assert waiting is not s
        assert waiting.is_waiting
        assert waiting.data == 1
        assert s.is_idle

    def test_with_error_keeps_data(self):
        s = Snapshot(ConnectionStatus.DONE, 7).with_error(ValueError("x"), ConnectionStatus.ACTIVE)
        assert s.data == 7
        assert s.status is ConnectionStatus.ACTIVE
        assert s.has_error

    def test_idle_clears_error(self):
        s = Snapshot(ConnectionStatus.DONE, 3, ValueError("x")).idle()
        assert s.is_idle
        assert s.error is None
        assert s.data == 3

    def test_frozen(self):
        s = Snapshot()
        with pytest.raises(AttributeError):
            s.data = 1


class TestClassify:
    def test_plain_value_is_sync(self):
        assert classify(3) == Sync(3)

    def test_none_is_sync(self):
        assert isinstance(classify(None), Sync)

    def test_coroutine_is_async(self):
        async def later():
            return 1

        coro = later()
        outcome = classify(coro)
        assert isinstance(outcome, Async)
        assert outcome.awaitable is coro
        coro.close()

    def test_async_generator_is_streaming(self):
        async def numbers():
            yield 1

        gen = numbers()
        outcome = classify(gen)
        assert isinstance(outcome, Streaming)
        assert outcome.iterator is gen

    @pytest.mark.asyncio
    async def test_future_is_async(self):
        fut = asyncio.get_running_loop().create_future()
        assert isinstance(classify(fut), Async)
        fut.cancel()
