"""In-process state store."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from sardis_paygate.models import InvocationStatus, PendingInvocation, utcnow
from sardis_paygate.state.base import StateStore, encode_record

logger = logging.getLogger(__name__)


class InMemoryStateStore(StateStore):
    """
    Dict-backed store for single-process deployments and tests.

    Records are kept as decoded JSON, the same encoding the Redis store
    writes, so callers never share a mutable object with the store and
    replayed results look the same on either backend. Expired entries are evicted lazily on read and by
    ``cleanup_expired``.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def _live(self, payment_id: str) -> Optional[dict[str, Any]]:
        data = self._records.get(payment_id)
        if data is None:
            return None
        record = PendingInvocation.from_dict(data)
        if record.is_expired():
            del self._records[payment_id]
            logger.debug(f"Evicted expired record {payment_id}")
            return None
        return data

    async def put(self, payment_id: str, record: PendingInvocation) -> None:
        async with self._lock:
            self._records[payment_id] = json.loads(encode_record(record))

    async def get(self, payment_id: str) -> Optional[PendingInvocation]:
        async with self._lock:
            data = self._live(payment_id)
            return PendingInvocation.from_dict(data) if data else None

    async def delete(self, payment_id: str) -> None:
        async with self._lock:
            self._records.pop(payment_id, None)

    async def compare_and_set_status(
        self,
        payment_id: str,
        expected: InvocationStatus,
        record: PendingInvocation,
    ) -> bool:
        async with self._lock:
            data = self._live(payment_id)
            if data is None or data["status"] != expected.value:
                return False
            self._records[payment_id] = json.loads(encode_record(record))
            return True

    async def cleanup_expired(self) -> int:
        """Drop every expired record. Returns how many were removed."""
        now = utcnow()
        async with self._lock:
            expired = [
                key for key, data in self._records.items()
                if PendingInvocation.from_dict(data).is_expired(now)
            ]
            for key in expired:
                del self._records[key]
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired pending invocations")
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)
