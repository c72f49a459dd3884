import asyncio
import logging
from typing import Optional

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from .config import settings

_logger = logging.getLogger(__name__)

_producer: Optional[AIOKafkaProducer] = None
_producer_lock = asyncio.Lock()


async def _with_backoff(start, what: str, attempts: int):
    backoff = 1.0
    last_exc: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            return await start()
        except Exception as e:
            last_exc = e
            _logger.warning("Kafka %s start failed (attempt %s/%s) | err=%s", what, attempt, attempts, e)
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, 30.0)
    raise last_exc or RuntimeError(f"Kafka {what} start failed")


async def get_producer(attempts: int = 8) -> AIOKafkaProducer:
    global _producer
    if _producer is None:
        async with _producer_lock:
            if _producer is None:

                async def start() -> AIOKafkaProducer:
                    producer = AIOKafkaProducer(bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS)
                    try:
                        await producer.start()
                    except Exception:
                        await producer.stop()
                        raise
                    return producer

                _producer = await _with_backoff(start, "producer", attempts)
                _logger.info("Kafka producer connected to %s", settings.KAFKA_BOOTSTRAP_SERVERS)
    return _producer


async def close_producer() -> None:
    global _producer
    if _producer is not None:
        await _producer.stop()
        _producer = None


async def create_consumer(topic: str, group_id: str, attempts: int = 8) -> AIOKafkaConsumer:
    async def start() -> AIOKafkaConsumer:
        # Offsets are committed only after a task was handled.
        consumer = AIOKafkaConsumer(
            topic,
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            group_id=group_id,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
        )
        await consumer.start()
        return consumer

    return await _with_backoff(start, "consumer", attempts)


async def close_consumer(consumer: Optional[AIOKafkaConsumer]) -> None:
    if consumer is not None:
        await consumer.stop()
