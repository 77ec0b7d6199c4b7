"""Shared test doubles: a virtual-time scheduler and a fake wake resource."""

import asyncio
import heapq
import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest

from bt_autoplay.devices import DeviceClass, DeviceDescriptor

HEADSET = DeviceDescriptor("AA:BB:CC:DD:EE:01", DeviceClass.WEARABLE_HEADSET, "Headset")
SPEAKER = DeviceDescriptor("AA:BB:CC:DD:EE:02", DeviceClass.LOUDSPEAKER, "Speaker")
KEYBOARD = DeviceDescriptor("AA:BB:CC:DD:EE:03", DeviceClass.PERIPHERAL_INPUT, "Keyboard")


class _Timer:
    def __init__(self, callback, args):
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """LoopScheduler stand-in whose clock only moves when told to.

    ``await advance(seconds)`` fires due callbacks in time order and lets
    the tasks they spawn run to completion before moving on.
    """

    def __init__(self):
        self.now = 0.0
        self._timers = []
        self._seq = itertools.count()
        self._tasks = set()

    def time(self):
        return self.now

    def call_later(self, delay, callback, *args):
        timer = _Timer(callback, args)
        heapq.heappush(self._timers, (self.now + delay, next(self._seq), timer))
        return timer

    def spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_timers(self):
        return sum(1 for _, _, t in self._timers if not t.cancelled)

    async def settle(self):
        for _ in range(50):
            if not any(not t.done() for t in self._tasks):
                break
            await asyncio.sleep(0)

    async def advance_to(self, target):
        while self._timers and self._timers[0][0] <= target:
            when, _, timer = heapq.heappop(self._timers)
            self.now = when
            if not timer.cancelled:
                timer.callback(*timer.args)
            await self.settle()
        self.now = target
        await self.settle()

    async def advance(self, seconds):
        await self.advance_to(self.now + seconds)

    async def cancel_all(self):
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class FakeWakeResource:
    def __init__(self):
        self.held = False
        self.acquires = 0
        self.releases = 0

    def acquire(self, max_hold):
        self.held = True
        self.acquires += 1

    def release(self):
        if self.held:
            self.releases += 1
        self.held = False

    def is_held(self):
        return self.held


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def wake_resource():
    return FakeWakeResource()


@pytest.fixture
def gate():
    gate = MagicMock()
    gate.is_ready = AsyncMock(return_value=True)
    return gate


@pytest.fixture
def dispatcher():
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(return_value=True)
    return dispatcher
