"""Pending-invocation state store interface."""
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Optional

from sardis_paygate.models import InvocationStatus, PendingInvocation


def encode_record(record: PendingInvocation) -> str:
    """JSON text every backend stores for a record.

    Values JSON cannot hold, such as a tool result of ``Decimal`` or a
    custom object, are stored as their ``str()``.
    """
    return json.dumps(record.to_dict(), default=str)


class StateStore(ABC):
    """Keyed persistence for pending invocations.

    Every operation is atomic from the caller's point of view. Records
    are removed by the backend once their ``expires_at`` has passed.
    """

    @abstractmethod
    async def put(self, payment_id: str, record: PendingInvocation) -> None:
        """Insert or replace the record for ``payment_id``."""
        pass

    @abstractmethod
    async def get(self, payment_id: str) -> Optional[PendingInvocation]:
        """Return the record, or None when absent or expired."""
        pass

    @abstractmethod
    async def delete(self, payment_id: str) -> None:
        """Remove the record. Deleting a missing key is not an error."""
        pass

    @abstractmethod
    async def compare_and_set_status(
        self,
        payment_id: str,
        expected: InvocationStatus,
        record: PendingInvocation,
    ) -> bool:
        """Write ``record`` only if the stored status equals ``expected``.

        Returns True when the write happened. This is the single
        primitive finalization relies on to run a tool body once.
        """
        pass

    async def close(self) -> None:
        return None
