from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import aiofiles

from kgpack.plugin_system.package import KGPG_FORMAT_VERSION, KGPG_MAGIC
from kgpack.utils.exceptions import ArchiveReadError

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ArchiveInfo:
    """Size, digest and container version of a finished archive."""

    path: Path
    size_bytes: int
    sha256: str
    package_version: int


async def inspect_archive(path: Union[str, Path], chunk_size: int = CHUNK_SIZE) -> ArchiveInfo:
    """Hash an archive and detect its container version.

    Args:
        path: The archive file
        chunk_size: Read size for streaming through the digest

    Returns:
        The archive info

    Raises:
        ArchiveReadError: If the file cannot be read
    """
    path = Path(path)
    digest = hashlib.sha256()
    size = 0
    head = b""
    try:
        async with aiofiles.open(path, "rb") as f:
            while True:
                chunk = await f.read(chunk_size)
                if not chunk:
                    break
                if len(head) < len(KGPG_MAGIC):
                    head += chunk[:len(KGPG_MAGIC) - len(head)]
                digest.update(chunk)
                size += len(chunk)
    except OSError as e:
        raise ArchiveReadError(f"Cannot read archive {path}: {e}", path=str(path)) from e

    return ArchiveInfo(
        path=path,
        size_bytes=size,
        sha256=digest.hexdigest(),
        package_version=KGPG_FORMAT_VERSION if head == KGPG_MAGIC else 1,
    )
