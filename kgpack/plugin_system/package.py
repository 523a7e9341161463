"""Plugin archive building for kgpack.

This module turns a resolved file set into a ``.kgpg`` archive. The
container itself is produced by an :class:`ArchiveWriter`:

* ``zip`` - a plain ZIP archive (package version 1)
* ``kgpg-v2`` - a fixed-size header followed by the ZIP (package version 2)
* ``external`` - a configured packer executable

Entries are written in sorted order with fixed timestamps and permissions
so the same inputs always give the same archive bytes.
"""

from __future__ import annotations

import abc
import asyncio
import enum
import io
import json
import stat
import struct
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import aiofiles
import aiofiles.os
import structlog

from kgpack.plugin_system.doc_images import prune_unreferenced_images
from kgpack.plugin_system.manifest import MANIFEST_FILE, PluginManifest
from kgpack.plugin_system.patterns import PatternResolver, ResolvedFileSet
from kgpack.utils.exceptions import (
    ArchiveReadError,
    ArchiveWriteError,
    ConfigurationError,
    MissingRequiredFile,
    PluginDirNotFound,
)

logger = structlog.get_logger("kgpack.package")

KGPG_MAGIC = b"KGPG"
KGPG_FORMAT_VERSION = 2
DEFAULT_HEADER_SIZE = 65536
DEFAULT_REQUIRED_FILES = ("manifest.json", "crawl.rhai")
ICON_CANDIDATES = ("icon.png", "icon.ico")

# magic, format version, flags, manifest excerpt length, icon length
HEADER_STRUCT = struct.Struct("<4sHHII")

ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
ZIP_FILE_MODE = stat.S_IFREG | 0o644


class ArchiveFormat(str, enum.Enum):
    """Container formats an archive can be written in."""

    ZIP = "zip"
    KGPG_V2 = "kgpg-v2"
    EXTERNAL = "external"


@dataclass
class ArchiveResult:
    """Outcome of writing one archive."""

    path: Path
    size_bytes: int
    entries: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    package_version: int = KGPG_FORMAT_VERSION


@dataclass
class KgpgHeader:
    version: int
    flags: int
    manifest: Dict[str, Any]
    icon: bytes


def build_kgpg_header(
        excerpt: Dict[str, Any],
        icon: Optional[bytes] = None,
        header_size: int = DEFAULT_HEADER_SIZE,
) -> bytes:
    """Build the fixed-size KGPG v2 header.

    Args:
        excerpt: Manifest fields to embed
        icon: Icon bytes, dropped with a warning when they do not fit
        header_size: Total header length, including padding

    Returns:
        Exactly ``header_size`` bytes

    Raises:
        ArchiveWriteError: If the manifest excerpt alone does not fit
    """
    excerpt_bytes = json.dumps(excerpt, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    used = HEADER_STRUCT.size + len(excerpt_bytes)
    if used > header_size:
        raise ArchiveWriteError(
            f"Manifest excerpt ({len(excerpt_bytes)} bytes) does not fit in a {header_size} byte header"
        )

    icon_bytes = icon or b""
    if used + len(icon_bytes) > header_size:
        logger.warning("Icon does not fit in archive header, omitting it",
                       plugin=excerpt.get("id"), icon_size=len(icon_bytes))
        icon_bytes = b""

    header = HEADER_STRUCT.pack(KGPG_MAGIC, KGPG_FORMAT_VERSION, 0, len(excerpt_bytes), len(icon_bytes))
    return (header + excerpt_bytes + icon_bytes).ljust(header_size, b"\0")


def read_kgpg_header(data: bytes) -> Optional[KgpgHeader]:
    """Parse a KGPG v2 header from the start of ``data``.

    Returns:
        The header, or None when ``data`` does not start with the magic

    Raises:
        ArchiveReadError: If the header is truncated or its excerpt is not JSON
    """
    if not data.startswith(KGPG_MAGIC):
        return None
    if len(data) < HEADER_STRUCT.size:
        raise ArchiveReadError("Truncated KGPG header")

    _, version, flags, excerpt_len, icon_len = HEADER_STRUCT.unpack_from(data)
    start = HEADER_STRUCT.size
    end = start + excerpt_len + icon_len
    if len(data) < end:
        raise ArchiveReadError("Truncated KGPG header")
    try:
        manifest = json.loads(data[start:start + excerpt_len].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ArchiveReadError(f"Invalid manifest excerpt in KGPG header: {e}") from e
    return KgpgHeader(version=version, flags=flags, manifest=manifest, icon=bytes(data[start + excerpt_len:end]))


def build_zip(payloads: Sequence[Tuple[str, bytes]], compression_level: int = 9) -> bytes:
    """Deflate ``payloads`` into ZIP bytes, entries in the given order."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED, compresslevel=compression_level) as zf:
        for name, data in payloads:
            info = zipfile.ZipInfo(name, date_time=ZIP_TIMESTAMP)
            info.create_system = 3
            info.external_attr = ZIP_FILE_MODE << 16
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, data, compress_type=zipfile.ZIP_DEFLATED, compresslevel=compression_level)
    return buffer.getvalue()


async def _read_payloads(
        files: Sequence[Tuple[str, Path]], output_path: Path
) -> Tuple[List[Tuple[str, bytes]], List[str]]:
    payloads: List[Tuple[str, bytes]] = []
    skipped: List[str] = []
    for name, path in files:
        try:
            async with aiofiles.open(path, "rb") as f:
                payloads.append((name, await f.read()))
        except FileNotFoundError:
            logger.warning("File missing at write time, skipping", path=name, archive=str(output_path))
            skipped.append(name)
        except OSError as e:
            raise ArchiveWriteError(f"Cannot read {path}: {e}", path=str(output_path)) from e
    return payloads, skipped


def _check_skipped(skipped: Sequence[str], required: Sequence[str]) -> None:
    missing = [name for name in required if name in skipped]
    if missing:
        raise MissingRequiredFile(missing)


def _temp_path(output_path: Path) -> Path:
    return output_path.with_name(output_path.name + ".tmp")


async def _discard(path: Path) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove temporary file", path=str(path), error=str(e))


async def _atomic_write(output_path: Path, data: bytes) -> None:
    temp_path = _temp_path(output_path)
    try:
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(data)
        await aiofiles.os.replace(temp_path, output_path)
    except OSError as e:
        await _discard(temp_path)
        raise ArchiveWriteError(f"Failed to write archive {output_path}: {e}", path=str(output_path)) from e


class ArchiveWriter(abc.ABC):
    """Writes a sorted list of files into an archive at ``output_path``."""

    package_version: Optional[int] = None

    @abc.abstractmethod
    async def write(
            self,
            files: Sequence[Tuple[str, Path]],
            output_path: Path,
            manifest: Optional[PluginManifest] = None,
            required: Sequence[str] = (),
    ) -> Tuple[List[str], List[str]]:
        """Write the archive.

        Args:
            files: ``(entry name, source path)`` pairs in write order
            output_path: Final archive location
            manifest: Parsed plugin manifest, if available
            required: Entries that must still be readable at write time

        Returns:
            The entry names written and the names skipped

        Raises:
            MissingRequiredFile: If a required entry vanished before writing
            ArchiveWriteError: If the container cannot be written
        """


class ZipArchiveWriter(ArchiveWriter):
    """Plain ZIP container."""

    package_version = 1

    def __init__(self, compression_level: int = 9) -> None:
        self.compression_level = compression_level

    def render(self, payloads: List[Tuple[str, bytes]], manifest: Optional[PluginManifest]) -> bytes:
        return build_zip(payloads, self.compression_level)

    async def write(
            self,
            files: Sequence[Tuple[str, Path]],
            output_path: Path,
            manifest: Optional[PluginManifest] = None,
            required: Sequence[str] = (),
    ) -> Tuple[List[str], List[str]]:
        payloads, skipped = await _read_payloads(files, output_path)
        _check_skipped(skipped, required)
        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, self.render, payloads, manifest)
        except (zipfile.BadZipFile, ValueError, OverflowError) as e:
            raise ArchiveWriteError(f"Failed to build archive {output_path}: {e}", path=str(output_path)) from e
        await _atomic_write(output_path, data)
        return [name for name, _ in payloads], skipped


class KgpgV2ArchiveWriter(ZipArchiveWriter):
    """KGPG v2: manifest excerpt and icon in a fixed header, then the ZIP."""

    package_version = KGPG_FORMAT_VERSION

    def __init__(self, compression_level: int = 9, header_size: int = DEFAULT_HEADER_SIZE) -> None:
        super().__init__(compression_level)
        self.header_size = header_size

    def render(self, payloads: List[Tuple[str, bytes]], manifest: Optional[PluginManifest]) -> bytes:
        if manifest is None:
            raise ArchiveWriteError("A parsed manifest is required for the kgpg-v2 format")
        by_name = dict(payloads)
        icon = next((by_name[name] for name in ICON_CANDIDATES if name in by_name), None)
        header = build_kgpg_header(manifest.header_excerpt(), icon, self.header_size)
        return header + build_zip(payloads, self.compression_level)


class ExternalArchiveWriter(ArchiveWriter):
    """Delegates container writing to an external packer executable.

    The command is run with the output path appended as its last argument
    and receives ``{"output": ..., "files": [{"name": ..., "path": ...}]}``
    as JSON on stdin.
    """

    def __init__(self, command: Sequence[str]) -> None:
        if not command:
            raise ConfigurationError("External packer command is empty",
                                     config_key="packaging.external_packer")
        self.command = [str(part) for part in command]

    async def write(
            self,
            files: Sequence[Tuple[str, Path]],
            output_path: Path,
            manifest: Optional[PluginManifest] = None,
            required: Sequence[str] = (),
    ) -> Tuple[List[str], List[str]]:
        present: List[Tuple[str, Path]] = []
        skipped: List[str] = []
        for name, path in files:
            if await aiofiles.os.path.isfile(path):
                present.append((name, path))
            else:
                logger.warning("File missing at write time, skipping", path=name, archive=str(output_path))
                skipped.append(name)
        _check_skipped(skipped, required)

        temp_path = _temp_path(output_path)
        request = {
            "output": str(temp_path),
            "files": [{"name": name, "path": str(path)} for name, path in present],
        }
        if manifest is not None:
            request["manifest"] = manifest.header_excerpt()

        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command, str(temp_path),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await proc.communicate(json.dumps(request).encode("utf-8"))
        except OSError as e:
            raise ArchiveWriteError(f"Failed to run external packer: {e}", path=str(output_path)) from e

        if proc.returncode != 0:
            await _discard(temp_path)
            message = stderr.decode("utf-8", errors="replace").strip()
            raise ArchiveWriteError(
                f"External packer exited with code {proc.returncode}: {message}",
                path=str(output_path),
                returncode=proc.returncode,
            )

        try:
            await aiofiles.os.replace(temp_path, output_path)
        except OSError as e:
            await _discard(temp_path)
            raise ArchiveWriteError(f"External packer produced no archive: {e}", path=str(output_path)) from e
        return [name for name, _ in present], skipped


def create_writer(packaging_config: Dict[str, Any]) -> ArchiveWriter:
    """Create the archive writer selected by ``packaging.archive_format``."""
    archive_format = packaging_config.get("archive_format", ArchiveFormat.KGPG_V2.value)
    level = packaging_config.get("compression_level", 9)
    if archive_format == ArchiveFormat.ZIP.value:
        return ZipArchiveWriter(level)
    if archive_format == ArchiveFormat.KGPG_V2.value:
        return KgpgV2ArchiveWriter(level, packaging_config.get("header_size", DEFAULT_HEADER_SIZE))
    if archive_format == ArchiveFormat.EXTERNAL.value:
        return ExternalArchiveWriter(packaging_config.get("external_packer") or [])
    raise ConfigurationError(f"Unsupported archive format: {archive_format}",
                             config_key="packaging.archive_format")


async def detect_package_version(path: Union[str, Path]) -> int:
    """Return 2 when the file starts with the KGPG magic, else 1."""
    async with aiofiles.open(path, "rb") as f:
        head = await f.read(len(KGPG_MAGIC))
    return KGPG_FORMAT_VERSION if head == KGPG_MAGIC else 1


class PluginPackager:
    """Builds ``.kgpg`` archives for plugin directories.

    Attributes:
        patterns: Pattern spec used to select each plugin's files
        required_files: Entries every archive must contain
        writer: Container writer
        prune_doc_images: Drop unreferenced ``doc_root`` images before writing
    """

    def __init__(
            self,
            patterns: List[str],
            packaging_config: Optional[Dict[str, Any]] = None,
            writer: Optional[ArchiveWriter] = None,
    ) -> None:
        packaging_config = packaging_config or {}
        self.patterns = list(patterns)
        self.required_files = list(packaging_config.get("required_files", DEFAULT_REQUIRED_FILES))
        self.prune_doc_images = bool(packaging_config.get("prune_doc_images", False))
        self.writer = writer or create_writer(packaging_config)
        self._resolver = PatternResolver(self.patterns)

    def check_required(self, resolved: ResolvedFileSet, plugin_name: Optional[str] = None) -> None:
        """Raise :class:`MissingRequiredFile` if a mandatory entry is absent."""
        missing = resolved.missing(self.required_files)
        if missing:
            raise MissingRequiredFile(missing, plugin_name=plugin_name)

    async def build(
            self,
            resolved: ResolvedFileSet,
            output_path: Union[str, Path],
            manifest: Optional[PluginManifest] = None,
            plugin_name: Optional[str] = None,
    ) -> ArchiveResult:
        """Write ``resolved`` to ``output_path``.

        Nothing is created or truncated at ``output_path`` unless every
        required file is part of ``resolved`` and still readable when the
        archive is written.

        Raises:
            MissingRequiredFile: If a mandatory entry is absent
            ArchiveWriteError: If the container cannot be written
        """
        output_path = Path(output_path)
        plugin_name = plugin_name or (manifest.id if manifest else None)
        self.check_required(resolved, plugin_name)

        try:
            await aiofiles.os.makedirs(output_path.parent, exist_ok=True)
        except OSError as e:
            raise ArchiveWriteError(f"Cannot create output directory: {e}", path=str(output_path),
                                    plugin_name=plugin_name) from e

        try:
            entries, skipped = await self.writer.write(
                resolved.sorted_items(), output_path, manifest, self.required_files
            )
        except MissingRequiredFile as e:
            raise MissingRequiredFile(e.paths, plugin_name=plugin_name) from e
        size = await aiofiles.os.path.getsize(output_path)
        version = self.writer.package_version or await detect_package_version(output_path)
        return ArchiveResult(
            path=output_path,
            size_bytes=size,
            entries=entries,
            skipped=skipped,
            package_version=version,
        )

    async def package_plugin(self, plugin_dir: Union[str, Path], output_file: Union[str, Path]) -> ArchiveResult:
        """Resolve, validate and archive one plugin directory.

        Args:
            plugin_dir: The plugin directory; its name is the plugin id
            output_file: Archive path to write

        Returns:
            The archive result

        Raises:
            PackagingError: If the plugin cannot be packaged
        """
        plugin_dir = Path(plugin_dir)
        plugin_id = plugin_dir.name
        if not plugin_dir.is_dir():
            raise PluginDirNotFound(plugin_id, str(plugin_dir))

        resolved = await self._resolver.resolve(plugin_dir)
        logger.debug("Resolved plugin files", plugin=plugin_id, files=list(resolved))
        if self.prune_doc_images:
            resolved = await prune_unreferenced_images(resolved, plugin_dir)

        self.check_required(resolved, plugin_id)
        manifest = await PluginManifest.load(plugin_dir / MANIFEST_FILE, plugin_id)
        result = await self.build(resolved, output_file, manifest, plugin_name=plugin_id)

        logger.info(
            "Packaged plugin",
            plugin=plugin_id,
            path=str(result.path),
            size_bytes=result.size_bytes,
            files=len(result.entries),
        )
        return result
