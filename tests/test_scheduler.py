"""Tests for DebounceScheduler."""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from relay_server.core.scheduler import DebounceScheduler

DELAY = 0.02


class TestDebounce:
    @pytest.mark.asyncio
    async def test_action_fires_after_delay(self):
        scheduler = DebounceScheduler("test")
        fired = []
        scheduler.schedule_once("k", DELAY, lambda: fired.append("k"))
        assert fired == []
        assert scheduler.pending("k") is True

        await asyncio.sleep(DELAY * 3)
        assert fired == ["k"]
        assert scheduler.pending("k") is False

    @pytest.mark.asyncio
    async def test_reschedule_replaces_pending_action(self):
        scheduler = DebounceScheduler("test")
        fired = []
        scheduler.schedule_once("k", DELAY, lambda: fired.append(1))
        scheduler.schedule_once("k", DELAY, lambda: fired.append(2))
        assert len(scheduler) == 1

        await asyncio.sleep(DELAY * 3)
        assert fired == [2]

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        scheduler = DebounceScheduler("test")
        fired = []
        scheduler.schedule_once("a", DELAY, lambda: fired.append("a"))
        scheduler.schedule_once("b", DELAY, lambda: fired.append("b"))

        await asyncio.sleep(DELAY * 3)
        assert sorted(fired) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_cancel(self):
        scheduler = DebounceScheduler("test")
        fired = []
        scheduler.schedule_once("k", DELAY, lambda: fired.append("k"))
        assert scheduler.cancel("k") is True
        assert scheduler.cancel("k") is False

        await asyncio.sleep(DELAY * 3)
        assert fired == []

    @pytest.mark.asyncio
    async def test_coroutine_action_runs_as_task(self):
        scheduler = DebounceScheduler("test")
        fired = []

        async def action():
            await asyncio.sleep(0)
            fired.append("done")

        scheduler.schedule_once("k", DELAY, action)
        await asyncio.sleep(DELAY * 3)
        await scheduler.drain()
        assert fired == ["done"]

    @pytest.mark.asyncio
    async def test_failing_action_does_not_break_scheduler(self):
        scheduler = DebounceScheduler("test")
        fired = []

        def boom():
            raise ValueError("boom")

        scheduler.schedule_once("bad", DELAY, boom)
        scheduler.schedule_once("good", DELAY, lambda: fired.append("good"))
        await asyncio.sleep(DELAY * 3)
        assert fired == ["good"]

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        scheduler = DebounceScheduler("test")
        fired = []
        for key in ("a", "b", "c"):
            scheduler.schedule_once(key, DELAY, lambda key=key: fired.append(key))
        scheduler.cancel_all()
        assert len(scheduler) == 0

        await asyncio.sleep(DELAY * 3)
        assert fired == []
