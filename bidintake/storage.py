"""Object storage access for uploaded bid documents."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol

import aiofiles
import aiofiles.os

from bidintake.config import get_config

logger = logging.getLogger(__name__)


class ObjectStorage(Protocol):
    """Minimal object store interface the pipeline depends on."""

    async def download(self, path: str) -> bytes: ...

    async def upload(self, path: str, data: bytes, content_type: str) -> str: ...


class LocalObjectStorage:
    """Filesystem-backed object storage rooted at a single directory."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or get_config().storage.root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Storage path escapes storage root: {path}")
        return target

    async def download(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise FileNotFoundError(f"Object not found in storage: {path}")
        async with aiofiles.open(target, "rb") as f:
            return await f.read()

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(path)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        async with aiofiles.open(target, "wb") as f:
            await f.write(data)
        logger.debug(f"Stored {len(data)} bytes ({content_type}) at {path}")
        return path
