"""Deferred, debounced result-change notifications."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional

import numpy as np

from altitude_detection.contracts import ShapeHandle
from altitude_detection.registry import ShapeRecord, ShapeRegistry

ExtremeCallback = Callable[[float, np.ndarray, ShapeHandle], None]
RangeCallback = Callable[[float, float, ShapeHandle], None]


@dataclass
class DispatchCallbacks:
    on_min_altitude_change: Optional[ExtremeCallback] = None
    on_max_altitude_change: Optional[ExtremeCallback] = None
    on_altitude_change: Optional[RangeCallback] = None


class DispatchQueue:
    """Same-thread stand-in for a microtask queue.

    A shape is queued at most once until the queue is drained; further
    updates only mutate its result state, so every drain reports the final
    value of the pass.
    """

    def __init__(self, callbacks: DispatchCallbacks):
        self.callbacks = callbacks
        self._pending: Deque[ShapeHandle] = deque()

    def schedule(self, record: ShapeRecord) -> bool:
        if record.result.dispatch_scheduled:
            return False
        record.result.dispatch_scheduled = True
        self._pending.append(record.handle)
        return True

    def __len__(self) -> int:
        return len(self._pending)

    def drain(self, registry: ShapeRegistry) -> int:
        """Deliver every queued notification. Returns the number of shapes reported.

        Shapes deleted since they were queued are skipped. If a callback
        raises, the shapes behind it stay queued for the next drain.
        """
        delivered = 0
        while self._pending:
            handle = self._pending.popleft()
            record = registry.get(handle)
            if record is None or not record.result.dispatch_scheduled:
                continue

            result = record.result
            min_changed = result.min_pending
            max_changed = result.max_pending
            result.min_pending = False
            result.max_pending = False
            result.dispatch_scheduled = False

            callbacks = self.callbacks
            if min_changed and callbacks.on_min_altitude_change is not None:
                callbacks.on_min_altitude_change(
                    result.min_altitude, result.min_point.copy(), handle,
                )
            if max_changed and callbacks.on_max_altitude_change is not None:
                callbacks.on_max_altitude_change(
                    result.max_altitude, result.max_point.copy(), handle,
                )
            if (min_changed or max_changed) and callbacks.on_altitude_change is not None:
                callbacks.on_altitude_change(result.min_altitude, result.max_altitude, handle)

            if min_changed or max_changed:
                delivered += 1
        return delivered

    def clear(self) -> None:
        self._pending.clear()
