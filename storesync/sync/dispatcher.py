"""Hand-off of push tasks away from the caller's return path.

``submit`` never blocks and never raises into the local write path. The
local dispatcher runs tasks on a bounded pool of asyncio workers; the Kafka
channel puts the same bounded queue in front of its publishers and hands the
tasks to ``sync.worker``.
"""
import asyncio
import json
import logging
from typing import Awaitable, Callable, List, Optional

from ..common.config import settings
from ..common.kafka_client import get_producer
from ..common.metrics import SYNC_TASKS_DROPPED
from .tasks import PushTask

_logger = logging.getLogger(__name__)

Handler = Callable[[PushTask], Awaitable[object]]


class LocalSyncDispatcher:
    def __init__(self, handler: Handler, workers: Optional[int] = None, queue_size: Optional[int] = None):
        self._handler = handler
        self._workers = workers or settings.SYNC_WORKERS
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size or settings.SYNC_QUEUE_SIZE)
        self._tasks: List[asyncio.Task] = []

    def start(self) -> None:
        if self._tasks:
            return
        for n in range(self._workers):
            self._tasks.append(asyncio.create_task(self._run(), name=f"sync-worker-{n}"))
        _logger.info("Sync dispatcher started with %s workers", self._workers)

    def submit(self, task: PushTask) -> None:
        try:
            self._queue.put_nowait(task)
        except asyncio.QueueFull:
            SYNC_TASKS_DROPPED.inc()
            _logger.warning("Sync queue full, dropping push task | task=%s", task)

    async def join(self) -> None:
        await self._queue.join()

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _run(self) -> None:
        while True:
            task = await self._queue.get()
            try:
                await self._handler(task)
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.exception("Push task failed | task=%s", task)
            finally:
                self._queue.task_done()


class KafkaSyncChannel(LocalSyncDispatcher):
    """Publishes push tasks to ``SYNC_TOPIC`` from a bounded queue."""

    def __init__(
        self,
        topic: Optional[str] = None,
        publishers: Optional[int] = None,
        queue_size: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(self._publish, workers=publishers, queue_size=queue_size)
        self._topic = topic or settings.SYNC_TOPIC
        self._timeout = timeout or settings.REMOTE_TIMEOUT_SECONDS

    async def _publish(self, task: PushTask) -> None:
        try:
            await asyncio.wait_for(self._send(task), timeout=self._timeout)
        except asyncio.TimeoutError:
            _logger.warning("Timed out publishing push task | task=%s timeout=%s", task, self._timeout)
        except Exception as e:
            _logger.warning("Failed to publish push task | task=%s err=%s", task, e)

    async def _send(self, task: PushTask) -> None:
        producer = await get_producer()
        await producer.send_and_wait(self._topic, json.dumps(task.to_dict()).encode("utf-8"))
