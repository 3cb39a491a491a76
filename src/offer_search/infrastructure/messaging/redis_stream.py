"""Redis Streams ingress for sync commands.

Upstream services ``XADD`` one entry per change event to the sync stream,
with the JSON command in the ``body`` field.  This adapter reads the stream
through a consumer group and hands every entry to
:meth:`SyncWorkerPool.submit` together with its settlement callbacks:

* ``ack``  -- ``XACK`` the entry
* ``nack`` -- re-append the body to the stream, then ``XACK`` the original

Entries this consumer read but never settled (the process died) stay in the
group's pending list and are read again first on the next start.
"""
from __future__ import annotations

import asyncio
import functools
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError, ResponseError

from offer_search.config import Settings
from offer_search.sync.consumer import SyncWorkerPool

logger = structlog.get_logger(__name__)

BODY_FIELD = "body"

_BACKLOG = "0"
_NEW = ">"


def _text(value: bytes | str) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisStreamIngress:
    """Consumer-group reader that feeds one :class:`SyncWorkerPool`."""

    def __init__(
        self,
        client: aioredis.Redis,
        pool: SyncWorkerPool,
        stream: str,
        group: str,
        consumer: str,
        count: int = 50,
        block_ms: int = 5000,
        retry_backoff_seconds: float = 1.0,
    ) -> None:
        self._client = client
        self._pool = pool
        self._stream = stream
        self._group = group
        self._consumer = consumer
        self._count = count
        self._block_ms = block_ms
        self._backoff = retry_backoff_seconds
        self._task: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings: Settings, pool: SyncWorkerPool) -> RedisStreamIngress:
        return cls(
            aioredis.from_url(settings.redis_url),
            pool,
            stream=settings.sync_stream,
            group=settings.sync_consumer_group,
            consumer=settings.sync_consumer_name,
            count=settings.sync_read_count,
            block_ms=settings.sync_read_block_ms,
            retry_backoff_seconds=settings.sync_retry_backoff_seconds,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._consume(), name="sync-ingress")
        logger.info("sync_ingress_started", stream=self._stream, group=self._group, consumer=self._consumer)

    async def stop(self) -> None:
        """Stop reading. Deliveries already handed to the pool still settle."""
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("sync_ingress_stopped", stream=self._stream)

    async def close(self) -> None:
        await self._client.aclose()

    # -- reading ------------------------------------------------------------

    async def _consume(self) -> None:
        await self._ensure_group()
        cursor = _BACKLOG
        while True:
            try:
                response = await self._client.xreadgroup(
                    self._group,
                    self._consumer,
                    {self._stream: cursor},
                    count=self._count,
                    block=self._block_ms if cursor == _NEW else None,
                )
            except RedisError as exc:
                logger.warning("sync_ingress_read_failed", stream=self._stream, error=str(exc))
                await asyncio.sleep(self._backoff)
                continue

            entries = [entry for _, stream_entries in response or [] for entry in stream_entries]
            if cursor != _NEW:
                if not entries:
                    logger.info("sync_ingress_backlog_done", stream=self._stream)
                    cursor = _NEW
                    continue
                cursor = _text(entries[-1][0])

            for message_id, fields in entries:
                await self._deliver(_text(message_id), fields or {})

    async def _ensure_group(self) -> None:
        while True:
            try:
                await self._client.xgroup_create(self._stream, self._group, id="0", mkstream=True)
                logger.info("sync_ingress_group_created", stream=self._stream, group=self._group)
                return
            except ResponseError as exc:
                if "BUSYGROUP" in str(exc):
                    return
                logger.error("sync_ingress_group_failed", stream=self._stream, error=str(exc))
                raise
            except RedisError as exc:
                logger.warning("sync_ingress_unavailable", stream=self._stream, error=str(exc))
                await asyncio.sleep(self._backoff)

    async def _deliver(self, message_id: str, fields: dict[Any, Any]) -> None:
        body = fields.get(BODY_FIELD.encode(), fields.get(BODY_FIELD, b""))
        await self._pool.submit(
            body,
            functools.partial(self._ack, message_id),
            functools.partial(self._requeue, message_id, body),
        )

    # -- settlement ---------------------------------------------------------

    async def _ack(self, message_id: str) -> None:
        await self._client.xack(self._stream, self._group, message_id)

    async def _requeue(self, message_id: str, body: bytes | str) -> None:
        # A crash between the two calls leaves both copies; applying twice is a no-op.
        await self._client.xadd(self._stream, {BODY_FIELD: body})
        await self._client.xack(self._stream, self._group, message_id)
        logger.info("sync_command_requeued", message_id=message_id)


__all__ = ["BODY_FIELD", "RedisStreamIngress"]
