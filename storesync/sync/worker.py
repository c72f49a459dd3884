import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

from ..common.config import settings
from ..common.kafka_client import close_consumer, create_consumer
from .tasks import PushTask

_logger = logging.getLogger(__name__)


def decode_task(raw: bytes) -> Optional[PushTask]:
    try:
        return PushTask.from_dict(json.loads(raw.decode("utf-8")))
    except (ValueError, KeyError, TypeError) as e:
        _logger.warning("Discarding malformed push task | err=%s", e)
        return None


async def sync_worker(handler: Callable[[PushTask], Awaitable[object]], stop_event: Optional[asyncio.Event] = None):
    """
    Kafka consumer applying push tasks published by KafkaSyncChannel.
    A failed push is logged by the handler and not retried here.
    Resilient to Kafka outages: retries connection with backoff.
    """
    backoff = 1.0
    while True:
        if stop_event and stop_event.is_set():
            break
        consumer = None
        try:
            _logger.info("Sync worker connecting to Kafka topic=%s", settings.SYNC_TOPIC)
            consumer = await create_consumer(settings.SYNC_TOPIC, group_id="sync-worker")
            _logger.info("Sync worker connected and consuming")
            backoff = 1.0  # reset after successful connect
            while True:
                if stop_event and stop_event.is_set():
                    break
                batch = await consumer.getmany(timeout_ms=1000)
                if not batch:
                    continue
                for _, messages in batch.items():
                    for message in messages:
                        task = decode_task(message.value)
                        if task is None:
                            continue
                        try:
                            await handler(task)
                        except Exception:
                            _logger.exception("Push task failed | task=%s", task)
                await consumer.commit()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            _logger.warning("Sync worker error, will retry | err=%s", e)
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, 30.0)
        finally:
            await close_consumer(consumer)
