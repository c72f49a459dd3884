import asyncio
import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from prometheus_client import REGISTRY

from storesync.common.config import Settings
from storesync.common.kafka_client import _with_backoff
from storesync.services import build_services
from storesync.sync.dispatcher import KafkaSyncChannel, LocalSyncDispatcher
from storesync.sync.tasks import CUSTOMER, ORDER, PRODUCT, PushTask
from storesync.sync.worker import decode_task

OWNER = 1
SHOP = "demo-store.myshopify.com"


class TestLocalSyncDispatcher:
    async def test_runs_submitted_tasks(self):
        handler = AsyncMock()
        dispatcher = LocalSyncDispatcher(handler, workers=2, queue_size=10)
        dispatcher.start()
        tasks = [PushTask(PRODUCT, 1, n) for n in range(3)]

        for task in tasks:
            dispatcher.submit(task)
        await dispatcher.join()
        await dispatcher.stop()

        assert sorted(call.args[0].entity_id for call in handler.await_args_list) == [0, 1, 2]

    async def test_full_queue_drops_without_raising(self):
        handler = AsyncMock()
        dispatcher = LocalSyncDispatcher(handler, workers=1, queue_size=1)

        dispatcher.submit(PushTask(ORDER, 1, 1))
        dispatcher.submit(PushTask(ORDER, 1, 2))
        dispatcher.start()
        await dispatcher.join()
        await dispatcher.stop()

        assert [call.args[0].entity_id for call in handler.await_args_list] == [1]

    async def test_failing_task_does_not_kill_the_worker(self):
        handler = AsyncMock(side_effect=[RuntimeError("boom"), "created"])
        dispatcher = LocalSyncDispatcher(handler, workers=1, queue_size=10)
        dispatcher.start()

        dispatcher.submit(PushTask(CUSTOMER, 1, 1))
        dispatcher.submit(PushTask(CUSTOMER, 1, 2))
        await dispatcher.join()
        await dispatcher.stop()

        assert handler.await_count == 2

    async def test_local_writes_reach_the_remote(self, session_factory, remote):
        config = Settings(SYNC_TRANSPORT="local", SYNC_WORKERS=2, SYNC_QUEUE_SIZE=10)
        services = build_services(session_factory, config=config, client_factory=lambda domain, token: remote)
        await services.registry.connect(OWNER, SHOP, "shpat_test")
        services.dispatcher.start()

        product = await services.products.create_product(OWNER, name="Desk Lamp", price=Decimal("30.00"), stock=4)
        customer = await services.customers.create_customer(OWNER, name="Ada Lovelace", email="ada@example.com")
        await services.dispatcher.join()
        await services.close()

        assert sorted(resource for resource, _ in remote.created) == ["customers", "products"]
        assert (await services.products.get_product(OWNER, product.id)).external_id is not None
        assert (await services.customers.get_customer(OWNER, customer.id)).external_id is not None


class TestKafkaSyncChannel:
    async def test_publishes_task_as_json(self):
        producer = MagicMock()
        producer.send_and_wait = AsyncMock()
        with patch("storesync.sync.dispatcher.get_producer", AsyncMock(return_value=producer)):
            channel = KafkaSyncChannel("sync-test", publishers=1, queue_size=10, timeout=1.0)
            channel.start()
            channel.submit(PushTask(ORDER, 3, 14))
            await channel.join()
            await channel.stop()

        topic, value = producer.send_and_wait.await_args.args
        assert topic == "sync-test"
        assert json.loads(value) == {"kind": "order", "owner_id": 3, "entity_id": 14}

    async def test_broker_outage_is_swallowed(self):
        with patch("storesync.sync.dispatcher.get_producer", AsyncMock(side_effect=ConnectionError("no broker"))):
            channel = KafkaSyncChannel("sync-test", publishers=1, queue_size=10, timeout=1.0)
            channel.start()
            channel.submit(PushTask(ORDER, 3, 14))
            await channel.join()
            await channel.stop()

    async def test_backlog_is_bounded_while_broker_hangs(self):
        async def hang():
            await asyncio.sleep(3600)

        dropped_before = REGISTRY.get_sample_value("sync_tasks_dropped_total")
        with patch("storesync.sync.dispatcher.get_producer", hang):
            channel = KafkaSyncChannel("sync-test", publishers=2, queue_size=5, timeout=0.05)
            channel.start()
            for n in range(200):
                channel.submit(PushTask(PRODUCT, 1, n))

            assert channel._queue.qsize() == 5
            assert REGISTRY.get_sample_value("sync_tasks_dropped_total") - dropped_before == 195

            await asyncio.wait_for(channel.join(), timeout=5)
            await channel.stop()

    async def test_kafka_transport_is_wired_with_queue_bounds(self, session_factory):
        config = Settings(SYNC_TRANSPORT="kafka", SYNC_WORKERS=3, SYNC_QUEUE_SIZE=7)

        services = build_services(session_factory, config=config)

        assert isinstance(services.dispatcher, KafkaSyncChannel)
        assert services.dispatcher._queue.maxsize == 7


class TestDecodeTask:
    def test_valid_message(self):
        raw = json.dumps({"kind": "product", "owner_id": "2", "entity_id": 9}).encode()
        assert decode_task(raw) == PushTask(PRODUCT, 2, 9)

    def test_unknown_kind(self):
        assert decode_task(json.dumps({"kind": "invoice", "owner_id": 1, "entity_id": 1}).encode()) is None

    def test_missing_field(self):
        assert decode_task(json.dumps({"kind": "order"}).encode()) is None

    def test_not_json(self):
        assert decode_task(b"\xff\x00") is None


class TestKafkaBackoff:
    async def test_retries_until_started(self):
        start = AsyncMock(side_effect=[ConnectionError("refused"), "client"])
        with patch("storesync.common.kafka_client.asyncio.sleep", AsyncMock()) as sleep:
            assert await _with_backoff(start, "producer", attempts=3) == "client"
        sleep.assert_awaited_once_with(1.0)

    async def test_gives_up_with_last_error(self):
        start = AsyncMock(side_effect=ConnectionError("refused"))
        with patch("storesync.common.kafka_client.asyncio.sleep", AsyncMock()):
            with pytest.raises(ConnectionError):
                await _with_backoff(start, "consumer", attempts=2)
        assert start.await_count == 2
