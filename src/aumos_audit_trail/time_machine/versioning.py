"""Per-entity version assignment.

next = max(existing versions for the entity) + 1, defaulting to 1.

The read-then-increment itself runs inside the store (under a per-entity lock
in memory, inside a transaction guarded by a unique constraint in SQL). This
module owns the arithmetic and the retry policy: a writer that loses the race
gets VersionConflict from the store, waits a jittered backoff, recomputes and
tries again, and only surfaces the conflict once the retry bound is exhausted.
Stores serialize writers within one process, so retries only absorb races
between processes sharing the same database.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable

from aumos_audit_trail.errors import VersionConflict
from aumos_audit_trail.observability import get_logger
from aumos_audit_trail.time_machine.events import AuditRecord, PendingAudit

logger = get_logger(__name__)


def next_version(current_max: int | None) -> int:
    """Return the version following current_max (1 when there is none)."""
    return (current_max or 0) + 1


class VersionAssigner:
    """Runs the store's atomic insert with bounded retry on VersionConflict.

    Args:
        insert: The store's insert_next_version coroutine function.
        max_retries: Retries after the first attempt before giving up.
        backoff_seconds: Base delay; retry n sleeps a random time in
            [0, backoff_seconds * 2**n].
    """

    def __init__(
        self,
        insert: Callable[[PendingAudit], Awaitable[AuditRecord]],
        max_retries: int = 3,
        backoff_seconds: float = 0.01,
    ) -> None:
        self._insert = insert
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds

    async def assign(self, pending: PendingAudit) -> AuditRecord:
        """Persist pending under the next free version.

        Args:
            pending: The record awaiting a version.

        Returns:
            The persisted AuditRecord.

        Raises:
            VersionConflict: If every attempt lost the race.
        """
        attempt = 0
        while True:
            try:
                return await self._insert(pending)
            except VersionConflict as exc:
                if attempt >= self._max_retries:
                    logger.error(
                        "Version assignment retries exhausted",
                        attempts=attempt + 1,
                        **exc.log_context(),
                    )
                    raise
                attempt += 1
                logger.info("Version conflict, recomputing", attempt=attempt, **exc.log_context())
                if self._backoff_seconds > 0:
                    await asyncio.sleep(random.uniform(0, self._backoff_seconds * 2**attempt))
