"""Image references in plugin documentation.

Used to keep archives free of ``doc_root`` images that ``doc.md`` never
shows. Pruning is opt-in through ``packaging.prune_doc_images``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import List, Set, Union

import aiofiles
import structlog

from kgpack.plugin_system.patterns import ResolvedFileSet

DOC_ROOT = "doc_root"
DOC_FILE = "doc.md"

MARKDOWN_IMAGE = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")
HTML_IMAGE = re.compile(r"""<img[^>]+src=["']([^"']+)["'][^>]*>""", re.IGNORECASE)

REMOTE_PREFIXES = ("http://", "https://", "//")

logger = structlog.get_logger("kgpack.doc_images")


def _clean_reference(reference: str) -> str:
    return reference.strip().split("?")[0].split("#")[0]


def _resolve_reference(reference: str, doc_root: Path) -> Union[str, None]:
    candidate = Path(reference)
    full_path = candidate if candidate.is_absolute() else (doc_root / candidate)
    full_path = Path(os.path.normpath(full_path))

    if full_path.is_file():
        relative = os.path.relpath(full_path, doc_root)
        if not relative.startswith(".."):
            return Path(relative).as_posix()
        return None

    # Fall back to a file of the same name directly in doc_root
    by_name = doc_root / candidate.name
    if candidate.name and by_name.is_file():
        return candidate.name
    return None


async def extract_referenced_images(doc_path: Union[str, Path], doc_root: Union[str, Path]) -> List[str]:
    """Collect images referenced from a Markdown document.

    Args:
        doc_path: The Markdown file to scan
        doc_root: Directory that relative references resolve against

    Returns:
        Sorted paths relative to ``doc_root`` of referenced images that exist
        inside it. Remote URLs are ignored.
    """
    doc_path = Path(doc_path)
    doc_root = Path(doc_root).resolve()
    if not doc_path.is_file():
        return []

    async with aiofiles.open(doc_path, "r", encoding="utf-8") as f:
        content = await f.read()

    references = [m.group(2) for m in MARKDOWN_IMAGE.finditer(content)]
    references.extend(m.group(1) for m in HTML_IMAGE.finditer(content))

    found: Set[str] = set()
    for raw in references:
        reference = _clean_reference(raw)
        if not reference or reference.startswith(REMOTE_PREFIXES):
            continue
        resolved = _resolve_reference(reference, doc_root)
        if resolved is not None:
            found.add(resolved)
    return sorted(found)


def _is_doc_image(relative: str) -> bool:
    return relative.startswith(f"{DOC_ROOT}/") and relative != f"{DOC_ROOT}/{DOC_FILE}"


async def prune_unreferenced_images(resolved: ResolvedFileSet, plugin_root: Union[str, Path]) -> ResolvedFileSet:
    """Drop ``doc_root`` files that ``doc_root/doc.md`` does not reference."""
    plugin_root = Path(plugin_root)
    doc_root = plugin_root / DOC_ROOT
    referenced = {
        f"{DOC_ROOT}/{name}"
        for name in await extract_referenced_images(doc_root / DOC_FILE, doc_root)
    }
    unreferenced = [
        relative for relative in resolved
        if _is_doc_image(relative) and relative not in referenced
    ]
    if unreferenced:
        logger.info("Pruning unreferenced doc images", plugin=plugin_root.name, files=unreferenced)
    return resolved.without(unreferenced)
