import asyncio

import pytest

from tripgen.jobs.in_process_queue import InProcessQueue


@pytest.mark.anyio
async def test_tasks_processed_by_workers():
    done = []

    async def worker(task):
        await asyncio.sleep(0)
        done.append(task)

    queue = InProcessQueue(worker_fn=worker, concurrency=3)
    await queue.start()
    for i in range(10):
        await queue.submit(i)
    await queue.join()
    await queue.stop()
    assert sorted(done) == list(range(10))
    assert not queue.running


@pytest.mark.anyio
async def test_on_error_receives_escaping_exceptions():
    errors = []

    async def worker(task):
        if task == "bad":
            raise RuntimeError("kaboom")

    async def on_error(task, exc):
        errors.append((task, str(exc)))

    queue = InProcessQueue(worker_fn=worker, on_error=on_error)
    await queue.start()
    await queue.submit("good")
    await queue.submit("bad")
    await queue.submit("good")
    await queue.join()
    await queue.stop()
    assert errors == [("bad", "kaboom")]


@pytest.mark.anyio
async def test_failing_error_hook_does_not_kill_worker():
    processed = []

    async def worker(task):
        processed.append(task)
        raise ValueError(task)

    async def on_error(task, exc):
        raise RuntimeError("hook broke")

    queue = InProcessQueue(worker_fn=worker, on_error=on_error)
    await queue.start()
    await queue.submit(1)
    await queue.submit(2)
    await queue.join()
    await queue.stop()
    assert processed == [1, 2]


def test_concurrency_must_be_positive():
    async def worker(task):
        pass

    with pytest.raises(ValueError):
        InProcessQueue(worker_fn=worker, concurrency=0)


@pytest.mark.anyio
async def test_stop_abandons_running_and_queued_tasks():
    started = asyncio.Event()
    abandoned = []

    async def worker(task):
        started.set()
        await asyncio.Event().wait()

    async def on_cancel(task):
        abandoned.append(task)

    queue = InProcessQueue(worker_fn=worker, on_cancel=on_cancel)
    await queue.start()
    await queue.submit("running")
    await queue.submit("waiting")
    await started.wait()
    assert queue.pending == 1

    await queue.stop()
    assert abandoned == ["running", "waiting"]
    assert queue.pending == 0


@pytest.mark.anyio
async def test_finished_tasks_are_not_abandoned():
    abandoned = []

    async def worker(task):
        pass

    async def on_cancel(task):
        abandoned.append(task)

    queue = InProcessQueue(worker_fn=worker, on_cancel=on_cancel)
    await queue.start()
    await queue.submit(1)
    await queue.join()
    await queue.stop()
    assert abandoned == []
