"""Point lookups that respect an in-flight rebuild."""

from __future__ import annotations

import asyncio
import json

import structlog

from promotion_cache.schemas.models import Promotion
from promotion_cache.utils.errors import (
    LookupNotFoundError,
    RebuildInProgressError,
    StorageError,
)

from .state import RebuildStatus

logger = structlog.get_logger(__name__)

DEFAULT_WAIT_TIMEOUT = 5.0


class ReadGate:
    """
    Serves lookups against the store.

    While no rebuild is active a lookup reads straight through. While one
    is active the caller waits on the rebuild status, up to
    ``wait_timeout`` seconds in total, and then reads the fresh
    generation. A miss is only reported when no rebuild started while
    the read was in flight.
    """

    def __init__(self, store, status: RebuildStatus, wait_timeout: float = DEFAULT_WAIT_TIMEOUT, metrics=None) -> None:
        if wait_timeout <= 0:
            raise ValueError("wait_timeout must be positive")
        self.store = store
        self.status = status
        self.wait_timeout = wait_timeout
        self.metrics = metrics
        self.logger = structlog.get_logger("read-gate")

    async def lookup(self, promotion_id: str) -> Promotion:
        """
        Return the promotion stored under ``promotion_id``.

        Raises:
            LookupNotFoundError: the id is absent from the current generation.
            RebuildInProgressError: a rebuild kept the lookup waiting past
                the deadline; safe to retry.
            StorageError: the store failed or holds an undecodable value.
        """
        try:
            promotion = await self._lookup(promotion_id)
        except LookupNotFoundError:
            self._record("not_found")
            raise
        except RebuildInProgressError:
            self._record("timeout")
            raise
        except StorageError:
            self._record("error")
            raise
        self._record("found")
        return promotion

    async def _lookup(self, promotion_id: str) -> Promotion:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_timeout

        while True:
            snapshot = self.status.snapshot()
            if snapshot.rebuild_active:
                remaining = deadline - loop.time()
                if remaining <= 0 or not await self.status.wait_until_idle(remaining):
                    self.logger.info(
                        "Lookup timed out waiting for rebuild",
                        id=promotion_id,
                        state=self.status.state.value,
                        timeout_seconds=self.wait_timeout,
                    )
                    raise RebuildInProgressError(promotion_id, self.wait_timeout)
                continue

            payload = await self.store.get(promotion_id)
            if payload is not None:
                return self._decode(promotion_id, payload)

            if self.status.epoch == snapshot.epoch:
                self.logger.info("Can't find the promotion.", id=promotion_id)
                raise LookupNotFoundError(promotion_id)

            # A rebuild started during the read; the miss may just be the flush.
            self.logger.debug("Lookup overlapped a rebuild start, retrying", id=promotion_id)

    def _decode(self, promotion_id: str, payload: str) -> Promotion:
        try:
            return Promotion.from_json(payload)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            self.logger.error("Stored promotion is not decodable", id=promotion_id, error=str(exc))
            raise StorageError(
                "Stored promotion is not decodable",
                operation="get",
                key=promotion_id,
            ) from exc

    def _record(self, result: str) -> None:
        if self.metrics is not None:
            self.metrics.record_lookup(result)
