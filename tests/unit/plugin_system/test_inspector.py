"""Tests for the archive inspector."""

from __future__ import annotations

import hashlib

import pytest

from kgpack.plugin_system.inspector import inspect_archive
from kgpack.plugin_system.package import KGPG_MAGIC
from kgpack.utils.exceptions import ArchiveReadError


@pytest.mark.asyncio
async def test_checksum_matches_hashlib(tmp_path):
    data = bytes(range(256)) * 1000
    path = tmp_path / "a.kgpg"
    path.write_bytes(data)

    info = await inspect_archive(path, chunk_size=4096)

    assert info.sha256 == hashlib.sha256(data).hexdigest()
    assert info.size_bytes == len(data)
    assert info.path == path
    assert info.package_version == 1


@pytest.mark.asyncio
async def test_detects_kgpg_v2(tmp_path):
    path = tmp_path / "b.kgpg"
    path.write_bytes(KGPG_MAGIC + b"\x02\x00" + b"\0" * 100)
    assert (await inspect_archive(path)).package_version == 2


@pytest.mark.asyncio
async def test_magic_split_across_chunks(tmp_path):
    path = tmp_path / "c.kgpg"
    path.write_bytes(KGPG_MAGIC + b"rest")
    assert (await inspect_archive(path, chunk_size=1)).package_version == 2


@pytest.mark.asyncio
async def test_empty_file(tmp_path):
    path = tmp_path / "empty.kgpg"
    path.write_bytes(b"")
    info = await inspect_archive(path)
    assert info.size_bytes == 0
    assert info.sha256 == hashlib.sha256(b"").hexdigest()


@pytest.mark.asyncio
async def test_unreadable_archive(tmp_path):
    with pytest.raises(ArchiveReadError) as exc_info:
        await inspect_archive(tmp_path / "missing.kgpg")
    assert exc_info.value.details["path"] == str(tmp_path / "missing.kgpg")
