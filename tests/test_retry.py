import asyncio
import pytest

from src.services.scanner.retry import RetryPolicy, retry_async
from src.services.scanner.processing_queue import ProcessingQueue

def test_bulk_policy():
    assert RetryPolicy.for_bulk(True) == RetryPolicy(max_attempts=3, backoff=1.0)
    assert RetryPolicy.for_bulk(False).max_attempts == 1

def test_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=2, backoff=-1)

@pytest.mark.asyncio
async def test_retry_until_success():
    calls = []
    retries = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError(f"fail {len(calls)}")
        return "ok"

    result = await retry_async(RetryPolicy(max_attempts=3), flaky, on_retry=lambda n, e: retries.append((n, str(e))))

    assert result == "ok"
    assert len(calls) == 3
    assert retries == [(1, "fail 1"), (2, "fail 2")]

@pytest.mark.asyncio
async def test_retry_exhausted_reraises_last_error():
    calls = []

    async def broken():
        calls.append(1)
        raise ValueError(f"boom {len(calls)}")

    with pytest.raises(ValueError, match="boom 2"):
        await retry_async(RetryPolicy(max_attempts=2), broken)
    assert len(calls) == 2

@pytest.mark.asyncio
async def test_single_attempt_does_not_retry():
    calls = []

    async def broken():
        calls.append(1)
        raise RuntimeError("no")

    with pytest.raises(RuntimeError):
        await retry_async(RetryPolicy.for_bulk(False), broken)
    assert len(calls) == 1

@pytest.mark.asyncio
async def test_backoff_waits_between_attempts():
    loop = asyncio.get_running_loop()
    stamps = []

    async def flaky():
        stamps.append(loop.time())
        if len(stamps) == 1:
            raise RuntimeError("first")
        return True

    await retry_async(RetryPolicy(max_attempts=2, backoff=0.05), flaky)
    assert stamps[1] - stamps[0] >= 0.04

# --- Processing queue ---

@pytest.mark.asyncio
async def test_queue_progress_follows_status():
    queue = ProcessingQueue(display_delay=0.01)
    item = queue.add("card.jpg")
    assert item.status == "pending" and item.progress == 0

    queue.update(item, "ocr-name")
    assert item.progress == 60

    queue.update(item, "ocr-effect", card_name="Kuriboh")
    assert item.progress == 80
    assert item.card_name == "Kuriboh"

    queue.update(item, "complete")
    assert item.progress == 100
    assert item.is_terminal
    assert item.id in queue

    await asyncio.sleep(0.05)
    assert item.id not in queue

@pytest.mark.asyncio
async def test_queue_keeps_failed_items():
    queue = ProcessingQueue(display_delay=0.01)
    item = queue.add("broken.jpg")
    queue.update(item, "ocr-name")
    queue.fail(item, "engine crashed")

    await asyncio.sleep(0.05)
    assert queue.get(item.id).status == "error"
    assert queue.get(item.id).error == "engine crashed"
    # Progress stays where the item failed
    assert queue.get(item.id).progress == 60

    queue.remove(item.id)
    assert len(queue) == 0

def test_queue_caps_failed_items():
    queue = ProcessingQueue(display_delay=0, max_failed=2)
    failed = []
    for i in range(4):
        item = queue.add(f"broken_{i}.jpg")
        queue.fail(item, "engine crashed")
        failed.append(item)

    # Oldest failures go first
    assert [i.filename for i in queue.items] == ["broken_2.jpg", "broken_3.jpg"]

    # A retried item no longer counts against the cap
    queue.update(failed[3], "reading")
    for name in ("again_0.jpg", "again_1.jpg"):
        queue.fail(queue.add(name), "engine crashed")
    assert [i.filename for i in queue.items] == ["broken_3.jpg", "again_0.jpg", "again_1.jpg"]
