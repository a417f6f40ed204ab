import asyncio

from onlyone.utils.tasks import start_interval, start_later


def test_interval_stops_when_callback_returns_false():
    calls = []

    def tick():
        calls.append(1)
        return len(calls) < 3

    async def scenario():
        handle = start_interval(tick, 0)
        await handle.wait()
        return handle

    handle = asyncio.run(scenario())
    assert len(calls) == 3
    assert not handle.active


def test_interval_accepts_coroutine_callbacks():
    calls = []

    async def tick():
        calls.append(1)
        return False

    async def scenario():
        await start_interval(tick, 0).wait()

    asyncio.run(scenario())
    assert calls == [1]


def test_cancelled_timer_never_fires():
    fired = []

    async def scenario():
        handle = start_later(lambda: fired.append(1), 0.05)
        handle.cancel()
        await handle.wait()
        await asyncio.sleep(0.1)
        return handle

    handle = asyncio.run(scenario())
    assert fired == []
    assert handle.task.cancelled()
