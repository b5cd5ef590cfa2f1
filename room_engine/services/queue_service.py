"""Deferred assignment queue drained on a fixed interval."""

from __future__ import annotations

from collections import deque
from threading import Event, Lock, Thread
from typing import Optional, Sequence

from room_engine.domain.errors import RoomAssignmentError
from room_engine.domain.models import RoomAssignmentRequest, RoomAssignmentResult
from room_engine.services.assignment_service import RoomAssignmentService
from room_engine.utils.logger import get_logger


logger = get_logger(__name__)


class AssignmentQueueProcessor:
    """FIFO queue of assignment requests handed to the service in batches.

    Items that fail are logged and dropped; there is no dead-letter store.
    """

    def __init__(
        self,
        service: RoomAssignmentService,
        interval_seconds: float = 30.0,
        batch_size: int = 50,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self._service = service
        self._interval_seconds = interval_seconds
        self._batch_size = batch_size
        self._queue: deque[RoomAssignmentRequest] = deque()
        self._queue_lock = Lock()
        self._drain_lock = Lock()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def pending_count(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    def enqueue(self, request: RoomAssignmentRequest) -> int:
        with self._queue_lock:
            self._queue.append(request)
            size = len(self._queue)
        logger.info("Assignment request queued | booking_id=%s | queue_size=%s", request.booking_id, size)
        return size

    def submit_bulk(self, requests: Sequence[RoomAssignmentRequest]) -> int:
        with self._queue_lock:
            self._queue.extend(requests)
            size = len(self._queue)
        logger.info("Bulk assignment requests queued | submitted=%s | queue_size=%s", len(requests), size)
        return size

    def drain_once(self) -> list[RoomAssignmentResult]:
        """Process up to one batch, then give failed notifications another attempt."""
        with self._drain_lock:
            with self._queue_lock:
                batch = [self._queue.popleft() for _ in range(min(self._batch_size, len(self._queue)))]

            results: list[RoomAssignmentResult] = []
            for request in batch:
                try:
                    results.append(self._service.assign_room(request))
                except RoomAssignmentError as exc:
                    logger.warning(
                        "Queued assignment dropped | booking_id=%s | error=%s",
                        request.booking_id,
                        exc,
                    )
                except Exception:
                    logger.exception("Queued assignment failed unexpectedly | booking_id=%s", request.booking_id)

            self._service.retry_failed_notifications()
            if batch:
                logger.info(
                    "Queue drained | processed=%s | assigned=%s | remaining=%s",
                    len(batch),
                    len(results),
                    self.pending_count(),
                )
            return results

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval_seconds):
            try:
                self.drain_once()
            except Exception:
                logger.exception("Queue drain tick failed")

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = Thread(target=self._run, name="assignment-queue", daemon=True)
        self._thread.start()
        logger.info(
            "Queue processor started | interval_seconds=%s | batch_size=%s",
            self._interval_seconds,
            self._batch_size,
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the worker and wait for any in-flight drain to finish."""
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        thread.join(timeout)
        self._thread = None
        logger.info("Queue processor stopped | pending=%s", self.pending_count())
