"""Catalog (``index.json``) generation for built plugin archives."""

from __future__ import annotations

import datetime
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import aiofiles
import aiofiles.os
import structlog

from kgpack.plugin_system.inspector import inspect_archive
from kgpack.plugin_system.manifest import MANIFEST_FILE, PluginManifest
from kgpack.release.version import ReleaseInfo
from kgpack.utils.exceptions import ArchiveReadError, ManifestParseError, OutputWriteError

logger = structlog.get_logger("kgpack.index")


@dataclass(frozen=True)
class CatalogEntry:
    """One plugin in the catalog."""

    id: str
    name: str
    version: str
    description: str
    author: str
    package_version: int
    download_url: str
    size_bytes: int
    sha256: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "packageVersion": self.package_version,
            "downloadUrl": self.download_url,
            "sizeBytes": self.size_bytes,
            "sha256": self.sha256,
        }


@dataclass
class Catalog:
    """The release catalog written to ``index.json``."""

    release: ReleaseInfo
    generated_at: str
    plugins: List[CatalogEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.release.tag,
            "generated_at": self.generated_at,
            "repository": {
                "owner": self.release.owner,
                "name": self.release.name,
                "url": self.release.repository_url,
            },
            "release_url": self.release.release_url,
            "plugins": [entry.to_dict() for entry in self.plugins],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)


def _utc_now() -> str:
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class IndexGenerator:
    """Builds the catalog from plugin directories and their built archives."""

    def __init__(self, release: ReleaseInfo, archive_suffix: str = ".kgpg") -> None:
        self.release = release
        self.archive_suffix = archive_suffix

    async def build_entry(self, plugin_dir: Path, output_dir: Path) -> Optional[CatalogEntry]:
        """Create the entry for one plugin, or None when it must be skipped."""
        plugin_id = plugin_dir.name
        manifest_path = plugin_dir / MANIFEST_FILE
        archive_name = f"{plugin_id}{self.archive_suffix}"
        archive_path = output_dir / archive_name

        if not manifest_path.is_file():
            logger.warning("Skipping plugin without manifest", plugin=plugin_id)
            return None
        if not archive_path.is_file():
            logger.warning("Skipping plugin without built archive", plugin=plugin_id, path=archive_name)
            return None

        try:
            manifest = await PluginManifest.load(manifest_path, plugin_id)
            info = await inspect_archive(archive_path)
        except (ManifestParseError, ArchiveReadError) as e:
            logger.error("Failed to index plugin", plugin=plugin_id, error=str(e))
            return None

        logger.info(
            "Indexed plugin",
            plugin=plugin_id,
            version=manifest.version,
            size_bytes=info.size_bytes,
            sha256=info.sha256[:8],
        )
        return CatalogEntry(
            id=plugin_id,
            name=manifest.name,
            version=manifest.version,
            description=manifest.description,
            author=manifest.author,
            package_version=info.package_version,
            download_url=self.release.download_url(archive_name),
            size_bytes=info.size_bytes,
            sha256=info.sha256,
        )

    async def generate(self, plugin_dirs: Iterable[Union[str, Path]], output_dir: Union[str, Path]) -> Catalog:
        """Create a catalog entry for every plugin with a built archive.

        Args:
            plugin_dirs: Plugin directories; each name is the plugin id
            output_dir: Directory holding the built archives

        Returns:
            The catalog, entries sorted by id
        """
        output_dir = Path(output_dir)
        entries: List[CatalogEntry] = []
        for plugin_dir in plugin_dirs:
            entry = await self.build_entry(Path(plugin_dir), output_dir)
            if entry is not None:
                entries.append(entry)

        entries.sort(key=lambda e: e.id)
        return Catalog(release=self.release, generated_at=_utc_now(), plugins=entries)

    async def write(self, catalog: Catalog, index_path: Union[str, Path]) -> Path:
        """Write the catalog, replacing any previous file atomically.

        Raises:
            OutputWriteError: If the index cannot be written
        """
        index_path = Path(index_path)
        temp_path = index_path.with_name(index_path.name + ".tmp")
        try:
            await aiofiles.os.makedirs(index_path.parent, exist_ok=True)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(catalog.to_json())
            await aiofiles.os.replace(temp_path, index_path)
        except OSError as e:
            try:
                await aiofiles.os.remove(temp_path)
            except FileNotFoundError:
                pass
            except OSError as cleanup_error:
                logger.warning("Failed to remove temporary file", path=str(temp_path), error=str(cleanup_error))
            raise OutputWriteError(f"Failed to write index {index_path}: {e}", path=str(index_path)) from e

        logger.info("Wrote plugin index", path=str(index_path), plugins=len(catalog.plugins))
        return index_path
