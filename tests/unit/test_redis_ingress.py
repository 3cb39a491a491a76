"""Unit tests for the Redis Streams ingress in front of the sync worker pool."""
from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from offer_search.config import Settings
from offer_search.infrastructure.document_store.memory import InMemoryDocumentStore
from offer_search.infrastructure.messaging import RedisStreamIngress
from offer_search.presentation.api.dependencies import Services
from offer_search.shared.exceptions import DocumentStoreError
from offer_search.sync import SyncWorkerPool, ViewSynchronizer
from tests.fixtures.factories import FakeEntityDataProvider

pytestmark = pytest.mark.asyncio

STREAM = "offer-search:sync"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

class FakeStreamClient:
    """Scripted stand-in for ``redis.asyncio.Redis`` stream commands."""

    def __init__(
        self,
        backlog: list[list[tuple[bytes, Any]]] | None = None,
        new: list[list[tuple[bytes, Any]]] | None = None,
        group_error: Exception | None = None,
        read_errors: int = 0,
    ) -> None:
        self.backlog = list(backlog or [])
        self.new = list(new or [])
        self.group_error = group_error
        self.read_errors = read_errors
        self.groups: list[tuple[str, str]] = []
        self.reads: list[tuple[str, int | None]] = []
        self.acked: list[str] = []
        self.added: list[tuple[str, dict]] = []
        self.closed = False

    async def xgroup_create(self, name, groupname, id="$", mkstream=False):
        if self.group_error is not None:
            raise self.group_error
        self.groups.append((name, groupname))
        return True

    async def xreadgroup(self, groupname, consumername, streams, count=None, block=None):
        cursor = next(iter(streams.values()))
        self.reads.append((cursor, block))
        if self.read_errors:
            self.read_errors -= 1
            raise RedisConnectionError("connection refused")
        batches = self.new if cursor == ">" else self.backlog
        if batches:
            return [[STREAM.encode(), batches.pop(0)]]
        if cursor != ">":
            return [[STREAM.encode(), []]]
        await asyncio.Event().wait()

    async def xack(self, name, groupname, *ids):
        self.acked.extend(ids)
        return len(ids)

    async def xadd(self, name, fields):
        self.added.append((name, dict(fields)))
        return b"9-0"

    async def aclose(self):
        self.closed = True


def _entry(message_id: str, body: bytes | None) -> tuple[bytes, Any]:
    return message_id.encode(), None if body is None else {b"body": body}


def _body(document_id: str = "O1") -> bytes:
    return json.dumps({
        "documentId": document_id,
        "entityKind": "offer",
        "operation": "create",
        "payload": {"offerId": document_id},
    }).encode("utf-8")


def _pool(apply: AsyncMock) -> SyncWorkerPool:
    synchronizer = MagicMock(spec=ViewSynchronizer)
    synchronizer.apply = apply
    return SyncWorkerPool(synchronizer, partitions=2, queue_size=4)


def _ingress(client: FakeStreamClient, pool: SyncWorkerPool) -> RedisStreamIngress:
    return RedisStreamIngress(
        client, pool, stream=STREAM, group="offer-search", consumer="worker-1",
        block_ms=5, retry_backoff_seconds=0,
    )


async def _until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.01)


async def _run(client: FakeStreamClient, apply: AsyncMock, predicate) -> RedisStreamIngress:
    pool = _pool(apply)
    ingress = _ingress(client, pool)
    await pool.start()
    await ingress.start()
    try:
        await _until(predicate)
    finally:
        await ingress.stop()
        await pool.stop()
    return ingress


# ---------------------------------------------------------------------------
# Delivery and settlement
# ---------------------------------------------------------------------------

class TestDelivery:

    async def test_applied_entry_is_acked(self) -> None:
        client = FakeStreamClient(new=[[_entry("1-0", _body())]])
        apply = AsyncMock()

        await _run(client, apply, lambda: client.acked == ["1-0"])

        apply.assert_awaited_once()
        assert apply.await_args.args[0].document_id == "O1"
        assert client.added == []

    async def test_retryable_failure_is_appended_again_then_acked(self) -> None:
        body = _body()
        client = FakeStreamClient(new=[[_entry("1-0", body)]])
        apply = AsyncMock(side_effect=DocumentStoreError("down"))

        await _run(client, apply, lambda: client.acked == ["1-0"])

        assert client.added == [(STREAM, {"body": body})]

    async def test_malformed_body_is_acked_without_apply(self) -> None:
        client = FakeStreamClient(new=[[_entry("1-0", b"not json")]])
        apply = AsyncMock()

        await _run(client, apply, lambda: client.acked == ["1-0"])

        apply.assert_not_awaited()
        assert client.added == []

    async def test_trimmed_pending_entry_is_acked(self) -> None:
        client = FakeStreamClient(backlog=[[_entry("1-0", None)]])
        apply = AsyncMock()

        await _run(client, apply, lambda: client.acked == ["1-0"])

        apply.assert_not_awaited()


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

class TestReading:

    async def test_pending_backlog_is_read_before_new_entries(self) -> None:
        client = FakeStreamClient(
            backlog=[[_entry("1-0", _body("O1"))]],
            new=[[_entry("2-0", _body("O2"))]],
        )
        apply = AsyncMock()

        await _run(client, apply, lambda: sorted(client.acked) == ["1-0", "2-0"])

        assert client.reads[:3] == [("0", None), ("1-0", None), (">", 5)]

    async def test_existing_group_is_reused(self) -> None:
        client = FakeStreamClient(
            new=[[_entry("1-0", _body())]],
            group_error=ResponseError("BUSYGROUP Consumer Group name already exists"),
        )

        await _run(client, AsyncMock(), lambda: client.acked == ["1-0"])

    async def test_new_group_is_created_on_the_stream(self) -> None:
        client = FakeStreamClient()

        await _run(client, AsyncMock(), lambda: any(cursor == ">" for cursor, _ in client.reads))

        assert client.groups == [(STREAM, "offer-search")]

    async def test_other_group_errors_stop_the_reader(self) -> None:
        client = FakeStreamClient(group_error=ResponseError("WRONGTYPE Operation against a key"))
        pool = _pool(AsyncMock())
        ingress = _ingress(client, pool)

        await ingress.start()
        await _until(lambda: not ingress.running)

        assert client.reads == []
        await ingress.stop()

    async def test_read_error_is_retried(self) -> None:
        client = FakeStreamClient(new=[[_entry("1-0", _body())]], read_errors=2)

        await _run(client, AsyncMock(), lambda: client.acked == ["1-0"])

        assert len(client.reads) >= 3

    async def test_stop_cancels_a_blocked_read_and_close_releases_the_client(self) -> None:
        client = FakeStreamClient()
        ingress = await _run(client, AsyncMock(), lambda: any(cursor == ">" for cursor, _ in client.reads))

        assert not ingress.running
        await ingress.close()
        assert client.closed


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

class TestServicesWiring:

    async def test_ingress_built_when_enabled(self) -> None:
        settings = Settings(store_backend="memory", sync_ingress_enabled=True, sync_stream="orders:sync")
        services = Services(settings, InMemoryDocumentStore(), FakeEntityDataProvider())

        assert isinstance(services.ingress, RedisStreamIngress)
        assert services.ingress._stream == "orders:sync"

    async def test_ingress_absent_when_disabled(self) -> None:
        settings = Settings(store_backend="memory", sync_ingress_enabled=False)
        services = Services(settings, InMemoryDocumentStore(), FakeEntityDataProvider())

        assert services.ingress is None

    async def test_ingress_stops_before_the_pool_and_closes_after(self) -> None:
        settings = Settings(store_backend="memory", sync_ingress_enabled=False)
        services = Services(settings, InMemoryDocumentStore(), FakeEntityDataProvider())
        calls: list[str] = []
        services.ingress = MagicMock(spec=RedisStreamIngress)
        services.ingress.start = AsyncMock(side_effect=lambda: calls.append("ingress.start"))
        services.ingress.stop = AsyncMock(side_effect=lambda: calls.append("ingress.stop"))
        services.ingress.close = AsyncMock(side_effect=lambda: calls.append("ingress.close"))

        await services.start()
        assert services.sync_pool.running
        await services.close()

        assert calls == ["ingress.start", "ingress.stop", "ingress.close"]
        assert not services.sync_pool.running
