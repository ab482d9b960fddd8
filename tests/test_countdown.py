import asyncio

from facetrack.countdown import CountdownTimer


def test_counts_3_2_1_then_starts_once():
    ticks, done = [], []

    async def go():
        timer = CountdownTimer(lambda: done.append(True), start_from=3, interval=0.01, on_tick=ticks.append)
        assert timer.start() is True
        assert timer.active
        await timer.wait()
        return timer

    timer = asyncio.run(go())
    assert ticks == [3, 2, 1]
    assert 0 not in ticks
    assert done == [True]
    assert timer.value is None and not timer.active


def test_second_start_while_counting_is_ignored():
    ticks, done = [], []

    async def go():
        timer = CountdownTimer(lambda: done.append(True), interval=0.01, on_tick=ticks.append)
        timer.start()
        await asyncio.sleep(0.015)
        assert timer.start() is False
        await timer.wait()

    asyncio.run(go())
    assert ticks == [3, 2, 1]
    assert done == [True]


def test_async_done_callback_awaited():
    started = []

    async def start_recording():
        await asyncio.sleep(0)
        started.append("recording")

    async def go():
        timer = CountdownTimer(start_recording, interval=0.0)
        timer.start()
        await timer.wait()

    asyncio.run(go())
    assert started == ["recording"]


def test_cancel_on_teardown_never_fires():
    done = []

    async def go():
        timer = CountdownTimer(lambda: done.append(True), interval=0.05)
        timer.start()
        await asyncio.sleep(0.01)
        assert timer.value == 3
        timer.cancel()
        await asyncio.sleep(0.2)
        return timer

    timer = asyncio.run(go())
    assert done == []
    assert timer.value is None
