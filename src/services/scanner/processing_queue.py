import asyncio
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Set

from src.core.constants import MAX_FAILED_QUEUE_ITEMS, QUEUE_DISPLAY_DELAY
from src.core.models import ProcessingQueueItem, STATUS_PROGRESS

logger = logging.getLogger(__name__)

class ProcessingQueue:
    """
    Per-image status items shown while a scan is in flight.
    Completed items linger for a short display delay before they are dropped;
    failed items stay until removed, or until more than max_failed newer items failed.
    """

    def __init__(self, display_delay: float = QUEUE_DISPLAY_DELAY, max_failed: int = MAX_FAILED_QUEUE_ITEMS):
        self.display_delay = display_delay
        self.max_failed = max_failed
        self._failed: Deque[str] = deque()
        self._items: Dict[str, ProcessingQueueItem] = {}
        self._removals: Set[asyncio.Task] = set()

    def __len__(self):
        return len(self._items)

    def __contains__(self, item_id: str):
        return item_id in self._items

    @property
    def items(self) -> List[ProcessingQueueItem]:
        return list(self._items.values())

    def get(self, item_id: str) -> Optional[ProcessingQueueItem]:
        return self._items.get(item_id)

    def add(self, filename: str, item_id: Optional[str] = None) -> ProcessingQueueItem:
        item = ProcessingQueueItem(filename=filename) if item_id is None else ProcessingQueueItem(id=item_id, filename=filename)
        self._items[item.id] = item
        return item

    def update(self, item: ProcessingQueueItem, status: str, **fields) -> ProcessingQueueItem:
        """Moves an item to a new status. Progress follows the status unless the item errored."""
        item.status = status
        if status in STATUS_PROGRESS:
            item.progress = STATUS_PROGRESS[status]
        for key, value in fields.items():
            setattr(item, key, value)

        if status == "complete":
            self.schedule_removal(item.id)
        elif status == "error":
            self._track_failure(item.id)
        elif item.id in self._failed:
            # Retried after an earlier failure
            self._failed.remove(item.id)
        return item

    def _track_failure(self, item_id: str):
        if item_id in self._failed:
            return
        self._failed.append(item_id)
        while len(self._failed) > self.max_failed:
            dropped = self._failed.popleft()
            self._items.pop(dropped, None)
            logger.debug(f"Dropped failed queue item {dropped}")

    def fail(self, item: ProcessingQueueItem, error: str) -> ProcessingQueueItem:
        return self.update(item, "error", error=error)

    def remove(self, item_id: str):
        self._items.pop(item_id, None)
        if item_id in self._failed:
            self._failed.remove(item_id)

    def clear(self):
        for task in list(self._removals):
            task.cancel()
        self._removals.clear()
        self._items.clear()
        self._failed.clear()

    def schedule_removal(self, item_id: str, delay: Optional[float] = None):
        delay = self.display_delay if delay is None else delay
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to defer on
            self.remove(item_id)
            return

        async def _remove_later():
            await asyncio.sleep(delay)
            self.remove(item_id)

        task = loop.create_task(_remove_later())
        self._removals.add(task)
        task.add_done_callback(self._removals.discard)
