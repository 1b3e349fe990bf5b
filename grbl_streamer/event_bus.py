#!/usr/bin/env python3
# GRBL Streamer (GRBL G-code streaming controller)
# Copyright (C) 2026 Bob Kolbasowski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
# Optional (not required by the license): If you make improvements, please consider
# contributing them back upstream (e.g., via a pull request) so others can benefit.
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Fan-out of controller events to subscriber queues.

Events are plain tuples whose first element names the event, e.g.
``("buffer_fill", pct, used, capacity)``. See ``types.ControllerEvent``.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any

logger = logging.getLogger(__name__)


class EventBus:
    """Thread-safe publisher for controller events.

    Args:
        event_q: Optional queue that receives every event (the caller's own
            queue, as passed to the controller)
    """

    def __init__(self, event_q: queue.Queue | None = None):
        self._lock = threading.Lock()
        self._subscribers: list[queue.Queue] = []
        if event_q is not None:
            self._subscribers.append(event_q)

    def subscribe(self, maxsize: int = 0) -> queue.Queue:
        """Create and register a new subscriber queue."""
        q: queue.Queue = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._subscribers.append(q)
        return q

    def add_subscriber(self, q: queue.Queue) -> None:
        """Register an existing queue."""
        with self._lock:
            if q not in self._subscribers:
                self._subscribers.append(q)

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            try:
                self._subscribers.remove(q)
            except ValueError:
                pass

    def publish(self, event: tuple[Any, ...]) -> None:
        """Deliver an event to every subscriber without blocking.

        A full subscriber queue drops the event for that subscriber only.
        """
        with self._lock:
            subscribers = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait(event)
            except queue.Full:
                logger.warning(f"Dropping '{event[0]}' event for a full subscriber queue")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
