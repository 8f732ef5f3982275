import asyncio

from assetflow.core.thumbnails import LoadQueue, get_load_queue


def make_job(queue, log, name, *, delay=0.01, tracker=None):
    async def job():
        try:
            log.append(name)
            if tracker is not None:
                tracker["active"] += 1
                tracker["peak"] = max(tracker["peak"], tracker["active"])
            await asyncio.sleep(delay)
        finally:
            if tracker is not None:
                tracker["active"] -= 1
            queue.on_complete()
    return job


async def test_never_exceeds_ceiling():
    queue = LoadQueue(max_concurrent=2)
    log = []
    tracker = {"active": 0, "peak": 0}

    for i in range(8):
        queue.enqueue(make_job(queue, log, i, tracker=tracker))
    assert queue.in_flight == 2
    assert queue.pending == 6

    await queue.join()

    assert sorted(log) == list(range(8))
    assert tracker["peak"] == 2
    assert queue.peak_in_flight == 2
    assert queue.in_flight == 0


async def test_dispatches_in_fifo_order():
    queue = LoadQueue(max_concurrent=1, dispatch_delay=0)
    log = []

    for name in "abcde":
        queue.enqueue(make_job(queue, log, name, delay=0))
    await queue.join()

    assert log == list("abcde")


async def test_synchronous_failure_frees_its_slot():
    queue = LoadQueue(max_concurrent=1)
    log = []

    def broken():
        raise RuntimeError("boom")

    queue.enqueue(broken)
    queue.enqueue(make_job(queue, log, "after"))
    await queue.join()

    assert log == ["after"]
    assert queue.in_flight == 0


async def test_next_job_waits_for_dispatch_delay():
    queue = LoadQueue(max_concurrent=1, dispatch_delay=0.05)
    log = []

    queue.enqueue(make_job(queue, log, "first", delay=0))
    queue.enqueue(make_job(queue, log, "second", delay=0))
    await asyncio.sleep(0.01)

    assert log == ["first"]
    await queue.join()
    assert log == ["first", "second"]


async def test_shared_queue_bounds_every_producer():
    queue = get_load_queue(max_concurrent=2)
    log = []
    tracker = {"active": 0, "peak": 0}

    # three independent producers feeding the same process-wide queue
    for producer in range(3):
        for i in range(4):
            get_load_queue().enqueue(make_job(queue, log, (producer, i), tracker=tracker))
    await queue.join()

    assert len(log) == 12
    assert tracker["peak"] <= 2
