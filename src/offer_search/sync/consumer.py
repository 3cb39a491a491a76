"""Sync command consumer -- partitioned asyncio worker pool.

The message transport hands every delivery to :meth:`SyncWorkerPool.submit`
together with an ``ack`` and a ``nack`` coroutine.  Deliveries are routed to
one of N worker queues by a CRC32 hash of the command's partition key
(``documentId``), so commands for the same key are applied in arrival order
while different keys proceed in parallel.

Acknowledgement policy:

* applied (any outcome)           -> ``ack``
* malformed / non-retryable error -> ``ack`` (dropped, redelivery cannot help)
* retryable or unexpected error   -> ``nack`` (the transport redelivers)
"""
from __future__ import annotations

import asyncio
import json
import uuid
import zlib
from collections.abc import Mapping
from typing import Any, Callable, Coroutine, NamedTuple

import structlog
from pydantic import BaseModel, ValidationError

from offer_search.domain.value_objects import SyncCommand
from offer_search.infrastructure.logging import bind_request_id
from offer_search.shared.exceptions import MalformedCommandError, OfferSearchError
from offer_search.sync.synchronizer import ViewSynchronizer

logger = structlog.get_logger(__name__)

Callback = Callable[[], Coroutine[Any, Any, Any]]


def decode_command(raw: bytes | str | Mapping[str, Any]) -> SyncCommand:
    """Decode one delivery into a :class:`SyncCommand`.

    Raises:
        MalformedCommandError: The body is not JSON, not an object, or does
            not describe a valid command.
    """
    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        data = json.loads(raw) if isinstance(raw, str) else dict(raw)
    except (UnicodeDecodeError, json.JSONDecodeError, TypeError, ValueError) as exc:
        raise MalformedCommandError(f"Undecodable sync message: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedCommandError("Sync message is not a JSON object", context={"type": type(data).__name__})

    try:
        return SyncCommand.model_validate(data)
    except ValidationError as exc:
        raise MalformedCommandError(
            "Invalid sync command",
            context={"errors": exc.errors(include_url=False, include_input=False)},
        ) from exc


class PoolMetrics(BaseModel):
    processed: int = 0
    dropped: int = 0
    failed: int = 0


class _Delivery(NamedTuple):
    command: SyncCommand
    ack: Callback
    nack: Callback


class SyncWorkerPool:
    """Partitioned consumer pool in front of a :class:`ViewSynchronizer`."""

    def __init__(self, synchronizer: ViewSynchronizer, partitions: int = 5, queue_size: int = 10) -> None:
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        self._synchronizer = synchronizer
        self._queues: list[asyncio.Queue[_Delivery]] = [
            asyncio.Queue(maxsize=queue_size) for _ in range(partitions)
        ]
        self._workers: list[asyncio.Task] = []
        self.metrics = PoolMetrics()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    def partition_for(self, key: str) -> int:
        return zlib.crc32(key.encode("utf-8")) % len(self._queues)

    async def start(self) -> None:
        if self.running:
            logger.warning("sync_pool_already_running")
            return
        self._workers = [
            asyncio.create_task(self._work(index), name=f"sync-worker-{index}")
            for index in range(len(self._queues))
        ]
        logger.info("sync_pool_started", partitions=len(self._queues))

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers, optionally waiting for queued deliveries first.

        Deliveries still queued afterwards are nacked so the transport
        redelivers them.
        """
        if drain and self.running:
            await asyncio.gather(*(queue.join() for queue in self._queues))
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        requeued = 0
        for queue in self._queues:
            while not queue.empty():
                delivery = queue.get_nowait()
                queue.task_done()
                await self._settle(delivery.nack, "nack", logger.bind(document_id=delivery.command.document_id))
                requeued += 1
        logger.info("sync_pool_stopped", requeued=requeued, **self.metrics.model_dump())

    async def submit(self, raw: bytes | str | Mapping[str, Any], ack: Callback, nack: Callback) -> None:
        """Queue one delivery. Waits while the target partition is full."""
        try:
            command = decode_command(raw)
        except MalformedCommandError as exc:
            logger.warning("sync_command_dropped", error_code=exc.error_code, reason=exc.message, **exc.context)
            self.metrics.dropped += 1
            await self._settle(ack, "ack", logger)
            return
        partition = self.partition_for(command.partition_key)
        await self._queues[partition].put(_Delivery(command, ack, nack))

    async def _work(self, index: int) -> None:
        queue = self._queues[index]
        while True:
            delivery = await queue.get()
            try:
                await self._process(delivery)
            except Exception:
                logger.exception("sync_worker_error", partition=index, document_id=delivery.command.document_id)
            finally:
                queue.task_done()

    async def _process(self, delivery: _Delivery) -> None:
        command = delivery.command
        bind_request_id(uuid.uuid4().hex)
        log = logger.bind(
            entity_kind=command.entity_kind.value,
            operation=command.operation.value,
            document_id=command.document_id,
        )
        try:
            await self._synchronizer.apply(command)
        except OfferSearchError as exc:
            if exc.retryable:
                log.warning("sync_command_failed", error_code=exc.error_code, error=exc.message)
                self.metrics.failed += 1
                await self._settle(delivery.nack, "nack", log)
            else:
                log.warning("sync_command_dropped", error_code=exc.error_code, reason=exc.message)
                self.metrics.dropped += 1
                await self._settle(delivery.ack, "ack", log)
            return
        except Exception as exc:
            log.exception("sync_command_error", error=str(exc))
            self.metrics.failed += 1
            await self._settle(delivery.nack, "nack", log)
            return
        self.metrics.processed += 1
        await self._settle(delivery.ack, "ack", log)

    @staticmethod
    async def _settle(callback: Callback, action: str, log: Any) -> None:
        """Run an ack or nack; a transport failure here must not stop the worker."""
        try:
            await callback()
        except Exception:
            log.exception("sync_settle_failed", action=action)


__all__ = ["PoolMetrics", "SyncWorkerPool", "decode_command"]
