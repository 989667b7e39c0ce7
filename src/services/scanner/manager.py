import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Iterable, List, Optional, Set

from src.core.config import BulkSettings
from src.core.constants import PAUSE_POLL_INTERVAL
from src.core.models import ResultRecord
from src.core.utils import format_duration, generate_process_id
from src.services.scanner.models import BulkProgress, ProgressEvent
from src.services.scanner.pipeline import CardPipeline, ImageFile
from src.services.scanner.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]
ResultCallback = Callable[[ResultRecord], None]

@dataclass
class BulkState:
    """Mutable state of a bulk scan. Only the manager writes it."""
    is_processing: bool = False
    is_paused: bool = False
    is_stopped: bool = False
    processed_count: int = 0
    matched_count: int = 0
    failed_count: int = 0
    total: int = 0
    start_time: Optional[float] = None
    active_process_ids: Set[str] = field(default_factory=set)
    pending_queue: Deque[ImageFile] = field(default_factory=deque)
    # Survives across runs so later batches can skip files already scanned
    processed_filenames: Set[str] = field(default_factory=set)

    def reset_run(self):
        self.is_paused = False
        self.is_stopped = False
        self.processed_count = 0
        self.matched_count = 0
        self.failed_count = 0
        self.total = 0
        self.start_time = None
        self.active_process_ids.clear()
        self.pending_queue.clear()

class BulkScanManager:
    """
    Runs the card pipeline over many images with a bounded number of workers.

    Workers are asyncio tasks on one loop. Each worker checks stop and pause
    between items, pops the next file and runs it through the pipeline with
    the retry policy. The check and the pop happen without an await in between,
    so no two workers ever take the same file.

    processed_count is incremented when a file is dequeued, so at any time
    processed_count + len(pending_queue) == total. matched_count and failed_count
    are incremented when the item finishes.

    Callbacks are plain callables invoked on the event loop. Exceptions they raise
    are logged and never stop the scan.
    """

    def __init__(self, pipeline: CardPipeline, settings: Optional[BulkSettings] = None,
                 on_progress: Optional[ProgressCallback] = None,
                 on_result: Optional[ResultCallback] = None):
        self.pipeline = pipeline
        self.settings = settings or BulkSettings()
        self.on_progress = on_progress
        self.on_result = on_result

        self.state = BulkState()
        self.results: List[ResultRecord] = []
        self._finished_status = "idle"

    # --- State ---

    @property
    def status(self) -> str:
        if self.state.is_processing:
            return "paused" if self.state.is_paused else "running"
        return self._finished_status

    def snapshot(self) -> BulkProgress:
        state = self.state
        elapsed = int((time.perf_counter() - state.start_time) * 1000) if state.start_time else 0
        return BulkProgress(
            status=self.status,
            is_processing=state.is_processing,
            is_paused=state.is_paused,
            is_stopped=state.is_stopped,
            total=state.total,
            processed_count=state.processed_count,
            matched_count=state.matched_count,
            failed_count=state.failed_count,
            pending_count=len(state.pending_queue),
            active_count=len(state.active_process_ids),
            elapsed_ms=elapsed,
        )

    def _emit(self, kind: str, message: str, filename: Optional[str] = None):
        if kind in ("failed", "retry"):
            logger.warning(message)
        else:
            logger.info(message)

        if self.on_progress is None:
            return
        try:
            self.on_progress(ProgressEvent(kind=kind, message=message, filename=filename, progress=self.snapshot()))
        except Exception as e:
            logger.error(f"Progress callback failed: {e}")

    def _deliver(self, record: ResultRecord):
        if self.on_result is None:
            return
        try:
            self.on_result(record)
        except Exception as e:
            logger.error(f"Result callback failed for {record.filename}: {e}")

    # --- Controls ---

    def pause(self):
        if not self.state.is_processing or self.state.is_paused or self.state.is_stopped:
            return
        self.state.is_paused = True
        self._emit("paused", "Processing paused")

    def resume(self):
        if not self.state.is_processing or not self.state.is_paused:
            return
        self.state.is_paused = False
        self._emit("resumed", "Processing resumed")

    def stop(self):
        if not self.state.is_processing or self.state.is_stopped:
            return
        self.state.is_stopped = True
        self.state.is_paused = False
        self._emit("stopped", "Processing stopped, finishing in-flight items")

    # --- Run ---

    def _build_queue(self, files: Iterable[ImageFile]) -> Deque[ImageFile]:
        queue: Deque[ImageFile] = deque()
        seen = set(self.state.processed_filenames)

        for file in files:
            if self.settings.skip_duplicates and file.name in seen:
                self._emit("skip", f"Skipping duplicate: {file.name}", filename=file.name)
                continue
            seen.add(file.name)
            queue.append(file)

        limit = self.settings.batch_size
        if limit and len(queue) > limit:
            logger.info(f"Batch size {limit} reached, {len(queue) - limit} file(s) left for a later run")
            queue = deque(list(queue)[:limit])
        return queue

    async def run(self, files: Iterable[ImageFile]) -> List[ResultRecord]:
        """Processes files and returns the results in completion order."""
        if self.state.is_processing:
            raise RuntimeError("A bulk scan is already running")

        state = self.state
        state.reset_run()
        self.results = []
        state.is_processing = True
        state.start_time = time.perf_counter()

        try:
            state.pending_queue = self._build_queue(files)
            state.total = len(state.pending_queue)
            self._emit("start", f"Starting bulk scan of {state.total} file(s) with {self.settings.max_concurrent} worker(s)")

            workers = [
                asyncio.create_task(self._worker(i))
                for i in range(self.settings.max_concurrent)
            ]
            await asyncio.gather(*workers)
        finally:
            state.is_processing = False
            state.is_paused = False
            self._finished_status = "stopped" if state.is_stopped else "completed"

        duration = format_duration(self.snapshot().elapsed_ms)
        self._emit(
            "finished",
            f"Bulk scan {self._finished_status}: {state.processed_count} processed, "
            f"{state.matched_count} matched, {state.failed_count} failed in {duration}",
        )
        return list(self.results)

    async def _worker(self, worker_id: int):
        state = self.state
        while True:
            if state.is_stopped:
                break
            # Only queued files wait for resume
            if not state.pending_queue:
                break
            if state.is_paused:
                await asyncio.sleep(PAUSE_POLL_INTERVAL)
                continue

            file = state.pending_queue.popleft()
            state.processed_count += 1
            await self._process_item(file)

        logger.debug(f"Worker {worker_id} finished")

    async def _process_item(self, file: ImageFile):
        state = self.state
        process_id = generate_process_id()
        state.active_process_ids.add(process_id)
        item = self.pipeline.queue.add(file.name, item_id=process_id)
        started = time.perf_counter()

        def on_retry(attempt: int, error: Exception):
            self._emit("retry", f"Retrying {file.name} (attempt {attempt + 1}): {error}", filename=file.name)

        error: Optional[Exception] = None
        try:
            record = await retry_async(
                RetryPolicy.for_bulk(self.settings.auto_retry),
                lambda: self.pipeline.run(file, item, started=started),
                on_retry=on_retry,
            )
        except Exception as e:
            error = e
            record = self.pipeline.failure_record(file, e, started)

        if record.matched:
            state.matched_count += 1
        else:
            state.failed_count += 1
        state.processed_filenames.add(file.name)
        self.results.append(record)
        state.active_process_ids.discard(process_id)

        self._deliver(record)
        if error is not None:
            self._emit("failed", f"Failed {file.name}: {error}", filename=file.name)
            self._apply_error_handling()
        elif record.matched:
            self._emit("complete", f"Processed {file.name}: {record.matched_name} ({record.confidence:.0%})", filename=file.name)
        else:
            self._emit("complete", f"Processed {file.name}: no match", filename=file.name)

    def _apply_error_handling(self):
        mode = self.settings.error_handling
        if mode == "pause":
            self.pause()
        elif mode == "stop":
            self.stop()
