"""Plugin packaging for kgpack.

Modules:
    manifest: Plugin manifest parsing
    patterns: Pattern spec loading and file selection
    doc_images: Image references in plugin documentation
    package: Archive writers and the plugin packager
    inspector: Archive size, checksum and format detection
    orchestrator: Batch packaging across plugin directories
"""

from __future__ import annotations

from kgpack.plugin_system.inspector import ArchiveInfo, inspect_archive
from kgpack.plugin_system.manifest import PluginManifest
from kgpack.plugin_system.orchestrator import BatchOrchestrator, BatchResult, PackMode, PluginResult
from kgpack.plugin_system.package import (
    ArchiveFormat,
    ArchiveResult,
    ArchiveWriter,
    ExternalArchiveWriter,
    KgpgV2ArchiveWriter,
    PluginPackager,
    ZipArchiveWriter,
    read_kgpg_header,
)
from kgpack.plugin_system.patterns import ResolvedFileSet, load_pattern_spec, resolve

__all__ = [
    "ArchiveFormat",
    "ArchiveInfo",
    "ArchiveResult",
    "ArchiveWriter",
    "BatchOrchestrator",
    "BatchResult",
    "ExternalArchiveWriter",
    "KgpgV2ArchiveWriter",
    "PackMode",
    "PluginManifest",
    "PluginPackager",
    "PluginResult",
    "ResolvedFileSet",
    "ZipArchiveWriter",
    "inspect_archive",
    "load_pattern_spec",
    "read_kgpg_header",
    "resolve",
]
