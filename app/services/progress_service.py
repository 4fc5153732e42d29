"""
services/progress_service.py
In-process publish/subscribe hub for job progress events.
"""
import asyncio
from collections import defaultdict

from app.models.job_model import ProgressEvent, progress_percentage
from app.utils.helpers import get_logger

logger = get_logger(__name__)

QUEUE_SIZE = 100


class ProgressPublisher:
    """Fans progress events out to every subscriber of a job id."""

    def __init__(self, queue_size: int = QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, job_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[job_id].add(queue)
        logger.debug(f"Subscriber added for job {job_id} (total: {len(self._subscribers[job_id])})")
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue) -> None:
        if job_id not in self._subscribers:
            return
        self._subscribers[job_id].discard(queue)
        if not self._subscribers[job_id]:
            del self._subscribers[job_id]

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    def publish(self, job_id: str, processed: int, total: int, status: str) -> ProgressEvent:
        event = ProgressEvent(
            job_id=job_id,
            processed=processed,
            total=total,
            percentage=progress_percentage(processed, total),
            status=status,
        )
        for queue in list(self._subscribers.get(job_id, ())):
            if queue.full():
                # Slow consumer: drop its oldest event rather than block the job
                queue.get_nowait()
            queue.put_nowait(event)
        return event


progress_publisher = ProgressPublisher()
