import logging
from typing import Callable, List
from collections import deque

class LogStream(logging.Handler):
    """Buffers recent log lines and fans them out to registered listeners."""

    def __init__(self, maxlen: int = 100):
        super().__init__()
        self.listeners: List[Callable[[str], None]] = []
        # Keep a small buffer for late subscribers or history
        self.buffer = deque(maxlen=maxlen)
        self.formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s', datefmt='%H:%M:%S')

    def emit(self, record):
        try:
            msg = self.format(record)
            self.buffer.append(msg)

            for listener in list(self.listeners):
                try:
                    listener(msg)
                except Exception:
                    # Reported through logging.raiseExceptions, never propagated
                    self.handleError(record)
        except Exception:
            self.handleError(record)

    def register(self, listener: Callable[[str], None]):
        self.listeners.append(listener)

    def unregister(self, listener: Callable[[str], None]):
        if listener in self.listeners:
            self.listeners.remove(listener)

    def history(self) -> List[str]:
        return list(self.buffer)

    def clear(self):
        self.buffer.clear()

log_stream = LogStream()
