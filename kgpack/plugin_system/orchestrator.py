"""Batch packaging of plugin directories."""

from __future__ import annotations

import asyncio
import enum
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import structlog

from kgpack.plugin_system.package import ArchiveResult, PluginPackager
from kgpack.utils.exceptions import OutputWriteError, PluginDirNotFound

logger = structlog.get_logger("kgpack.orchestrator")

DEFAULT_EXCLUDED_DIRS = ("node_modules", "packed", ".git", "plugins")
ARCHIVE_SUFFIX = ".kgpg"
ICON_SOURCE = "icon.png"
ICON_SUFFIX = ".icon.png"


class PackMode(str, enum.Enum):
    """Which plugin directories a batch run packages."""

    ALL = "all"
    SINGLE = "single"
    ONLY = "only"


@dataclass
class PluginResult:
    """Outcome of packaging one plugin."""

    name: str
    success: bool
    error: Optional[str] = None
    archive: Optional[ArchiveResult] = None


@dataclass
class BatchResult:
    """Outcome of a batch run."""

    mode: PackMode
    output_dir: Path
    results: List[PluginResult] = field(default_factory=list)
    discovered: int = 0

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def exit_code(self) -> int:
        if self.failure_count or not self.results:
            return 1
        return 0


def discover_plugin_dirs(
        plugins_dir: Union[str, Path], excluded: Iterable[str] = DEFAULT_EXCLUDED_DIRS
) -> List[str]:
    """Names of the plugin directories directly under ``plugins_dir``, sorted."""
    plugins_dir = Path(plugins_dir)
    if not plugins_dir.is_dir():
        return []
    skip = set(excluded)
    return sorted(
        entry.name for entry in os.scandir(plugins_dir)
        if entry.is_dir() and entry.name not in skip
    )


def dedupe_names(names: Iterable[str]) -> List[str]:
    """Split comma-separated names, trim, drop blanks and duplicates (order kept)."""
    seen: Dict[str, None] = {}
    for raw in names:
        for part in raw.split(","):
            part = part.strip()
            if part:
                seen.setdefault(part, None)
    return list(seen)


class BatchOrchestrator:
    """Packages plugin directories into an output directory.

    Attributes:
        plugins_dir: Directory holding one subdirectory per plugin
        output_dir: Where archives and icon side files are written
        packager: Builds each archive
    """

    def __init__(
            self,
            plugins_dir: Union[str, Path],
            output_dir: Union[str, Path],
            packager: PluginPackager,
            packaging_config: Optional[Dict[str, Any]] = None,
    ) -> None:
        packaging_config = packaging_config or {}
        self.plugins_dir = Path(plugins_dir)
        self.output_dir = Path(output_dir)
        self.packager = packager
        self.excluded_dirs = list(packaging_config.get("excluded_dirs", DEFAULT_EXCLUDED_DIRS))
        self.archive_suffix = packaging_config.get("archive_suffix", ARCHIVE_SUFFIX)
        self.icon_source = packaging_config.get("icon_source", ICON_SOURCE)
        self.icon_suffix = packaging_config.get("icon_suffix", ICON_SUFFIX)

    def archive_path(self, plugin_name: str) -> Path:
        return self.output_dir / f"{plugin_name}{self.archive_suffix}"

    def cleanup(self, keep: Optional[Sequence[str]] = None, icons: bool = True) -> List[Path]:
        """Remove stale archives (and icon side files) from the output directory.

        Leftover ``<name>.kgpg.tmp`` files are always removed.

        Args:
            keep: Plugin names whose files survive; None removes everything
            icons: Also remove icon side files

        Returns:
            The removed paths

        Raises:
            OutputWriteError: If a stale file cannot be removed
        """
        if not self.output_dir.is_dir():
            return []

        keep_set = set(keep or [])
        temp_suffix = f"{self.archive_suffix}.tmp"
        removed: List[Path] = []
        for entry in sorted(self.output_dir.iterdir()):
            if not entry.is_file():
                continue
            if entry.name.endswith(temp_suffix):
                # partial writes from an interrupted run are never kept
                stem = None
            elif entry.name.endswith(self.icon_suffix):
                if not icons:
                    continue
                stem = entry.name[:-len(self.icon_suffix)]
            elif entry.name.endswith(self.archive_suffix):
                stem = entry.name[:-len(self.archive_suffix)]
            else:
                continue
            if keep is not None and stem in keep_set:
                continue
            try:
                entry.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise OutputWriteError(f"Cannot remove stale output {entry}: {e}", path=str(entry)) from e
            removed.append(entry)
            logger.info("Removed stale output", path=entry.name)
        return removed

    def copy_icon(self, plugin_name: str) -> Optional[Path]:
        source = self.plugins_dir / plugin_name / self.icon_source
        if not source.is_file():
            return None
        target = self.output_dir / f"{plugin_name}{self.icon_suffix}"
        try:
            shutil.copyfile(source, target)
        except OSError as e:
            logger.warning("Failed to copy plugin icon", plugin=plugin_name, error=str(e))
            return None
        return target

    async def package_one(self, plugin_name: str, kgpg_only: bool = False) -> PluginResult:
        """Package one plugin, converting any failure into a result."""
        plugin_dir = self.plugins_dir / plugin_name
        try:
            if not plugin_dir.is_dir():
                raise PluginDirNotFound(plugin_name, str(plugin_dir))
            archive = await self.packager.package_plugin(plugin_dir, self.archive_path(plugin_name))
        except Exception as e:
            logger.error("Failed to package plugin", plugin=plugin_name, error=str(e))
            return PluginResult(name=plugin_name, success=False, error=str(e))

        if not kgpg_only:
            self.copy_icon(plugin_name)
        return PluginResult(name=plugin_name, success=True, archive=archive)

    async def run(
            self,
            mode: Union[PackMode, str] = PackMode.ALL,
            plugin_names: Optional[Sequence[str]] = None,
            kgpg_only: bool = False,
    ) -> BatchResult:
        """Package plugins according to ``mode``.

        Args:
            mode: ``all``, ``single`` or ``only``
            plugin_names: The plugin (single) or allow-list (only)
            kgpg_only: Skip icon side files

        Returns:
            The batch result

        Raises:
            OutputWriteError: If the output directory cannot be prepared
        """
        mode = PackMode(mode)
        names = dedupe_names(plugin_names or [])
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OutputWriteError(f"Cannot create output directory {self.output_dir}: {e}",
                                   path=str(self.output_dir)) from e
        batch = BatchResult(mode=mode, output_dir=self.output_dir)

        if mode == PackMode.SINGLE:
            if len(names) != 1:
                raise ValueError("Single mode needs exactly one plugin name")
            batch.discovered = 1
            batch.results.append(await self.package_one(names[0], kgpg_only))
        else:
            if mode == PackMode.ONLY:
                if not names:
                    raise ValueError("Only mode needs at least one plugin name")
                self.cleanup(keep=names, icons=not kgpg_only)
                targets = names
            else:
                self.cleanup()
                targets = discover_plugin_dirs(self.plugins_dir, self.excluded_dirs)
                if not targets:
                    logger.error("No plugin directories found", path=str(self.plugins_dir))

            batch.discovered = len(targets)
            logger.info("Packaging plugins", mode=mode.value, count=len(targets))
            results = await asyncio.gather(*(self.package_one(name, kgpg_only) for name in targets))
            batch.results.extend(results)

        self.log_summary(batch)
        return batch

    def log_summary(self, batch: BatchResult) -> None:
        failed = [r.name for r in batch.results if not r.success]
        logger.info(
            "Packaging finished",
            succeeded=batch.success_count,
            failed=batch.failure_count,
            output_dir=str(batch.output_dir),
        )
        if failed:
            logger.error("Some plugins failed to package", plugins=failed)
