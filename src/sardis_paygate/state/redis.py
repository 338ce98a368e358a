"""
Redis-backed state store.

Shares pending invocations across gate instances. Each record is a hash
under ``sardis:paygate:<namespace>:<payment_id>`` holding the ``status``
and the JSON ``record``, with a TTL matching the record's expiry.
Compare-and-set runs as a Lua script so the status check and the write
are one atomic step on the server.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis

from sardis_paygate.models import InvocationStatus, PendingInvocation
from sardis_paygate.state.base import StateStore, encode_record

logger = logging.getLogger(__name__)

# KEYS[1] record key; ARGV[1] expected status; ARGV[2] new status;
# ARGV[3] new record JSON; ARGV[4] ttl
_CAS_SCRIPT = """
if redis.call('HGET', KEYS[1], 'status') ~= ARGV[1] then
  return 0
end
redis.call('HSET', KEYS[1], 'status', ARGV[2], 'record', ARGV[3])
redis.call('EXPIRE', KEYS[1], tonumber(ARGV[4]))
return 1
"""


class RedisStateStore(StateStore):
    """
    Durable state store on Redis.

    Usage:
        store = RedisStateStore.from_url("redis://localhost:6379/0")
        await store.put(record.payment_id, record)
        record = await store.get(payment_id)
    """

    def __init__(self, client: Any, namespace: str = "pending"):
        self._client = client
        self._namespace = namespace

    @classmethod
    def from_url(cls, redis_url: str, namespace: str = "pending") -> "RedisStateStore":
        client = aioredis.from_url(redis_url, decode_responses=True)
        logger.info(f"Using Redis state store (namespace={namespace})")
        return cls(client, namespace=namespace)

    def _key(self, payment_id: str) -> str:
        return f"sardis:paygate:{self._namespace}:{payment_id}"

    async def put(self, payment_id: str, record: PendingInvocation) -> None:
        key = self._key(payment_id)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            pipe.hset(key, mapping={"status": record.status.value, "record": encode_record(record)})
            pipe.expire(key, record.ttl_seconds())
            await pipe.execute()

    async def get(self, payment_id: str) -> Optional[PendingInvocation]:
        raw = await self._client.hget(self._key(payment_id), "record")
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            record = PendingInvocation.from_dict(json.loads(raw))
        except (ValueError, KeyError) as e:
            logger.error(f"Corrupt pending invocation for {payment_id}: {e}")
            return None
        if record.is_expired():
            return None
        return record

    async def delete(self, payment_id: str) -> None:
        await self._client.delete(self._key(payment_id))

    async def compare_and_set_status(
        self,
        payment_id: str,
        expected: InvocationStatus,
        record: PendingInvocation,
    ) -> bool:
        written = await self._client.eval(
            _CAS_SCRIPT,
            1,
            self._key(payment_id),
            expected.value,
            record.status.value,
            encode_record(record),
            str(record.ttl_seconds()),
        )
        return bool(int(written))

    async def close(self) -> None:
        await self._client.aclose()
