"""Coalescing write-behind buffer in front of the persistence collaborator."""

import asyncio
from typing import TYPE_CHECKING

from deep_memory.core.base import ErrorCode, StorageErrorDetails
from deep_memory.core.errors import PersistenceError
from deep_memory.core.logging import get_logger

if TYPE_CHECKING:
    from deep_memory.services import PersistenceCollaborator

logger = get_logger(__name__)

# Pending marker for a key that should be deleted
_DELETE: None = None


class CoalescingWriter:
    """Keeps only the newest pending payload per key.

    ``write`` and ``delete`` never touch the backend; ``flush`` pushes the
    pending set out one key at a time. A key whose write fails stays
    pending unless a newer value arrived meanwhile, and ``read`` answers
    from the pending set first so unsaved state is never lost to a reload.
    """

    def __init__(self, backend: "PersistenceCollaborator"):
        self.backend = backend
        self._pending: dict[str, bytes | None] = {}
        self._flush_lock = asyncio.Lock()
        self.writes = 0
        self.failures = 0

    @property
    def pending(self) -> list[str]:
        return list(self._pending)

    def write(self, key: str, value: bytes) -> None:
        self._pending[key] = value

    def delete(self, key: str) -> None:
        self._pending[key] = _DELETE

    async def read(self, key: str) -> bytes | None:
        if key in self._pending:
            return self._pending[key]
        try:
            return await self.backend.get(key)
        except Exception as e:
            raise PersistenceError(
                f"Failed to read {key}: {e!s}",
                StorageErrorDetails(source="CoalescingWriter", operation="read", key=key),
                code=ErrorCode.STORAGE_READ,
            ) from e

    async def flush(self) -> int:
        """Write out everything pending; returns how many keys were written.

        Raises:
            PersistenceError: at least one key failed, after all were tried
        """
        async with self._flush_lock:
            failed: dict[str, tuple[bytes | None, Exception]] = {}
            written = 0
            while self._pending:
                key = next(iter(self._pending))
                value = self._pending.pop(key)
                try:
                    if value is _DELETE:
                        await self.backend.delete(key)
                    else:
                        await self.backend.set(key, value)
                except Exception as e:
                    failed[key] = (value, e)
                    continue
                written += 1

            self.writes += written
            if not failed:
                return written

            self.failures += len(failed)
            for key, (value, _) in failed.items():
                # A newer write queued during the flush supersedes the failed one
                self._pending.setdefault(key, value)
            first_key, (_, first_error) = next(iter(failed.items()))
            logger.warning(
                "Persistence flush incomplete",
                failed_keys=list(failed),
                written=written,
            )
            raise PersistenceError(
                f"Failed to write {len(failed)} key(s), first {first_key}: {first_error!s}",
                StorageErrorDetails(source="CoalescingWriter", operation="flush", key=first_key),
                code=ErrorCode.STORAGE_WRITE,
            ) from first_error
