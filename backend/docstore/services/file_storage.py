"""File storage on local disk. Every disk call is bounded by a timeout."""
import asyncio
import logging
import os
import random
import re
import time
from collections.abc import AsyncIterator
from pathlib import Path, PurePath

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_filename(original_name: str) -> str:
    """Keep the last path component and replace anything outside [A-Za-z0-9._-]."""
    base = PurePath(original_name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("_", base).lstrip(".")
    return cleaned or "document.pdf"


def generate_storage_name(original_name: str) -> str:
    """Build `<epoch ms>-<random 9 digits>-<sanitized name>`."""
    millis = int(time.time() * 1000)
    suffix = random.randint(100_000_000, 999_999_999)
    return f"{millis}-{suffix}-{sanitize_filename(original_name)}"

class FileStorageService:
    """Handles file read/write/delete in a flat upload directory."""

    def __init__(self, base_path: str | Path, io_timeout: float = 30.0):
        self.base_path = Path(base_path)
        self.io_timeout = io_timeout

    def ensure_directory(self) -> None:
        self.base_path.mkdir(parents=True, exist_ok=True)

    def path_for(self, storage_name: str) -> str:
        return str(self.base_path / storage_name)

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self.io_timeout)

    async def save(self, file_bytes: bytes, storage_name: str) -> tuple[str, int]:
        """Write bytes under `storage_name`. Returns (path, size confirmed on disk).

        The file is created exclusively; an existing file with the same name
        raises FileExistsError and is left alone. A partially written file is
        removed before the error propagates.
        """
        file_path = self.path_for(storage_name)

        async def _write():
            async with aiofiles.open(file_path, "xb") as f:
                await f.write(file_bytes)

        try:
            await self._bounded(_write())
        except FileExistsError:
            logger.error("Refusing to overwrite existing file %s", file_path)
            raise
        except (OSError, asyncio.TimeoutError):
            logger.exception("Failed to write %s", file_path)
            await self.discard(file_path)
            raise

        try:
            size = await self.size(file_path)
        except (OSError, asyncio.TimeoutError):
            logger.exception("Failed to confirm write of %s", file_path)
            await self.discard(file_path)
            raise
        return file_path, size

    async def size(self, storage_path: str) -> int:
        return await self._bounded(aiofiles.os.path.getsize(storage_path))

    async def exists(self, storage_path: str) -> bool:
        return await self._bounded(aiofiles.os.path.isfile(storage_path))

    async def open_read(self, storage_path: str):
        """Open a stored file for reading. Returns (handle, size).

        The open handle keeps the bytes readable even if the file is renamed
        or unlinked afterwards. Raises FileNotFoundError if it is missing.
        """
        async def _open():
            return await aiofiles.open(storage_path, "rb")

        handle = await self._bounded(_open())
        try:
            size = os.fstat(handle.fileno()).st_size
        except OSError:
            await handle.close()
            raise
        return handle, size

    @staticmethod
    def tombstone_for(storage_path: str) -> str:
        path = Path(storage_path)
        return str(path.with_name(f".{path.name}.deleted"))

    async def stage_delete(self, storage_path: str) -> str | None:
        """Move a file aside so the removal can still be undone.

        Returns the tombstone path, or None if the file was already gone.
        """
        if not await self.exists(storage_path):
            return None
        tombstone = self.tombstone_for(storage_path)
        await self._bounded(aiofiles.os.rename(storage_path, tombstone))
        return tombstone

    async def restore(self, tombstone: str, storage_path: str) -> None:
        """Put a staged file back under its original path."""
        await self._bounded(aiofiles.os.rename(tombstone, storage_path))

    async def delete(self, storage_path: str) -> bool:
        """Delete file from storage. Returns False if it was already gone."""
        if not await self.exists(storage_path):
            return False
        await self._bounded(aiofiles.os.remove(storage_path))
        return True

    async def discard(self, storage_path: str) -> None:
        """Best-effort removal of a file nothing references any more."""
        try:
            await self.delete(storage_path)
        except (OSError, asyncio.TimeoutError):
            logger.exception("Could not remove orphaned file %s", storage_path)


async def iter_file(handle, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
    """Yield chunks from an open aiofiles handle, closing it when done."""
    try:
        while chunk := await handle.read(chunk_size):
            yield chunk
    finally:
        await handle.close()
