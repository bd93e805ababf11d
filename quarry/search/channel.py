# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Typed event channel for progressive scan delivery.

The scan runs on a worker thread and pushes ``ScanEvent`` objects into a
bounded queue; the consumer (an HTTP event stream, a CLI progress display)
drains it. Closing the channel is the cancellation signal: the producer sees
``send`` return False and stops at its next table boundary.
"""

import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)


class ScanEventType(str, Enum):
    """Events of a progressive scan, in the order they can occur."""
    START = "start"
    TOTAL = "total"
    PROGRESS = "progress"
    FOUND = "found"
    TABLE_ERROR = "table_error"
    TIMEOUT = "timeout"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ScanEvent:
    type: ScanEventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in (ScanEventType.COMPLETE, ScanEventType.ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "data": self.data}

    def to_sse(self) -> str:
        """Server-Sent Events wire format."""
        payload = json.dumps(self.data, default=str)
        return f"event: {self.type.value}\ndata: {payload}\n\n"


_END = object()


class EventChannel:
    """Bounded, thread-safe, closable queue of scan events."""

    def __init__(self, maxsize: int = 1000, put_timeout: float = 0.1):
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._put_timeout = put_timeout

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, event: ScanEvent) -> bool:
        """Enqueue an event, waiting while the queue is full.

        Returns:
            False if the channel is (or becomes) closed before the event is queued
        """
        return self._put(event)

    def _put(self, item: Any) -> bool:
        while not self._closed.is_set():
            try:
                self._queue.put(item, timeout=self._put_timeout)
                # close() may have drained the queue while this put was waiting
                return not self._closed.is_set()
            except queue.Full:
                continue
        return False

    def finish(self) -> None:
        """Signal that no more events will be sent."""
        self._put(_END)

    def close(self) -> None:
        """Consumer side: stop accepting events and discard queued ones."""
        if self._closed.is_set():
            return
        self._closed.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        logger.debug("Event channel closed by consumer")

    def receive(self, timeout: Optional[float] = None) -> Optional[ScanEvent]:
        """Next event, or None once the producer has finished.

        Raises:
            queue.Empty: if no event arrives within ``timeout``
        """
        item = self._queue.get(timeout=timeout)
        if item is _END:
            return None
        return item

    def __iter__(self) -> Iterator[ScanEvent]:
        while True:
            event = self.receive()
            if event is None:
                return
            yield event
