"""File selection for plugin archives.

Patterns come from the ``inputs`` of the ``package`` target in the
project's ``project.json``. Each one is anchored with ``{projectRoot}``;
the ``{projectRoot}/plugins/**/`` prefix is stripped so that what remains
is matched against a single plugin directory.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import aiofiles
import aiofiles.os
import structlog

from kgpack.utils.exceptions import ConfigReadError, PatternMatchError

PROJECT_ROOT_TOKEN = "{projectRoot}"
PLUGIN_PREFIX = "{projectRoot}/plugins/**/"

DEFAULT_PATTERNS: Tuple[str, ...] = (
    "{projectRoot}/plugins/**/manifest.json",
    "{projectRoot}/plugins/**/config.json",
    "{projectRoot}/plugins/**/crawl.rhai",
    "{projectRoot}/plugins/**/icon.png",
    "{projectRoot}/plugins/**/doc_root/doc.md",
    "{projectRoot}/plugins/**/doc_root/*.{jpg,jpeg,png,gif,webp,bmp,svg,ico}",
)

logger = structlog.get_logger("kgpack.patterns")


class ResolvedFileSet(Mapping):
    """Relative path (forward slashes) to absolute path of the selected files.

    Insertion order reflects pattern order; :meth:`sorted_items` gives the
    canonical order used when writing archives.
    """

    def __init__(self, files: Optional[Dict[str, Path]] = None) -> None:
        self._files: Dict[str, Path] = dict(files or {})

    def __getitem__(self, key: str) -> Path:
        return self._files[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)

    def __repr__(self) -> str:
        return f"ResolvedFileSet({sorted(self._files)!r})"

    def sorted_items(self) -> List[Tuple[str, Path]]:
        return sorted(self._files.items())

    def missing(self, required: List[str]) -> List[str]:
        return [name for name in required if name not in self._files]

    def without(self, names: List[str]) -> ResolvedFileSet:
        drop = set(names)
        return ResolvedFileSet({k: v for k, v in self._files.items() if k not in drop})


def default_patterns() -> List[str]:
    return list(DEFAULT_PATTERNS)


async def load_pattern_spec(project_json: Union[str, Path]) -> List[str]:
    """Read the package input patterns from ``project.json``.

    Falls back to :data:`DEFAULT_PATTERNS` when the file is missing,
    unreadable or has no ``targets.package.inputs``. An ``inputs`` list
    without any ``{projectRoot}`` entries yields no patterns.
    """
    project_json = Path(project_json)
    try:
        data = await _read_project_json(project_json)
    except ConfigReadError as e:
        logger.warning("Failed to read project configuration, using default patterns",
                       path=str(project_json), error=str(e))
        return default_patterns()

    targets = data.get("targets") if isinstance(data, dict) else None
    package_target = targets.get("package") if isinstance(targets, dict) else None
    inputs = package_target.get("inputs") if isinstance(package_target, dict) else None
    if not isinstance(inputs, list):
        logger.warning("No package inputs in project configuration, using default patterns",
                       path=str(project_json))
        return default_patterns()

    return [item for item in inputs if isinstance(item, str) and PROJECT_ROOT_TOKEN in item]


async def _read_project_json(path: Path) -> Any:
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return json.loads(await f.read())
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConfigReadError(f"Cannot read {path}: {e}", path=str(path)) from e


def relative_pattern(pattern: str) -> str:
    """Rewrite an anchored pattern so it is relative to a plugin directory."""
    rewritten = pattern.replace("\\", "/").replace(PLUGIN_PREFIX, "", 1)
    return rewritten.lstrip("/")


def expand_braces(pattern: str) -> List[str]:
    """Expand ``{a,b}`` alternatives, including nested ones.

    Raises:
        PatternMatchError: On unbalanced braces
    """
    depth = 0
    start = -1
    for i, ch in enumerate(pattern):
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth < 0:
                raise PatternMatchError(f"Unbalanced '}}' in pattern: {pattern}", pattern=pattern)
            if depth == 0:
                head, body, tail = pattern[:start], pattern[start + 1:i], pattern[i + 1:]
                options = _split_top_level(body)
                expanded: List[str] = []
                for option in options:
                    expanded.extend(expand_braces(head + option + tail))
                return expanded
    if depth:
        raise PatternMatchError(f"Unbalanced '{{' in pattern: {pattern}", pattern=pattern)
    return [pattern]


def _split_top_level(body: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    current = ""
    for ch in body:
        if ch == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        current += ch
    parts.append(current)
    return parts


def _segment_to_regex(segment: str, pattern: str) -> str:
    out = "" if segment.startswith(".") else r"(?!\.)"
    i = 0
    while i < len(segment):
        ch = segment[i]
        if ch == "*":
            out += "[^/]*"
        elif ch == "?":
            out += "[^/]"
        elif ch == "[":
            end = segment.find("]", i + 2 if segment[i + 1:i + 2] in ("!", "^") else i + 1)
            if end == -1:
                raise PatternMatchError(f"Unclosed character class in pattern: {pattern}", pattern=pattern)
            body = segment[i + 1:end]
            if body[:1] in ("!", "^"):
                body = "^" + body[1:]
            out += "[" + body.replace("\\", "\\\\") + "]"
            i = end
        else:
            out += re.escape(ch)
        i += 1
    return out


def glob_to_regex(pattern: str) -> str:
    """Convert a glob pattern to an anchored regex pattern string.

    ``*`` and ``?`` stay within one path segment, ``**`` spans whole
    segments (zero or more), ``{a,b}`` selects alternatives. Segments that
    start with a dot are only matched by pattern segments that do too.
    """
    alternatives = []
    for expanded in expand_braces(pattern):
        segments = [s for s in expanded.split("/") if s]
        if not segments:
            raise PatternMatchError(f"Empty pattern: {pattern!r}", pattern=pattern)
        regex = ""
        for index, segment in enumerate(segments):
            last = index == len(segments) - 1
            if segment == "**":
                if last:
                    regex += r"(?!\.)[^/]+(?:/(?!\.)[^/]+)*"
                else:
                    regex += r"(?:(?!\.)[^/]+/)*"
                continue
            regex += _segment_to_regex(segment, pattern)
            if not last:
                regex += "/"
        alternatives.append(regex)
    return "^(?:" + "|".join(alternatives) + ")$"


def compile_pattern(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(glob_to_regex(pattern))
    except re.error as e:
        raise PatternMatchError(f"Malformed pattern {pattern}: {e}", pattern=pattern) from e


def list_plugin_files(plugin_root: Path) -> List[str]:
    """All regular files under ``plugin_root`` as sorted forward-slash paths."""
    files: List[str] = []

    def on_error(error: OSError) -> None:
        logger.warning("Failed to scan directory", path=str(error.filename), error=str(error))

    for root, dirs, names in os.walk(plugin_root, onerror=on_error):
        dirs.sort()
        root_path = Path(root)
        for name in names:
            file_path = root_path / name
            if not file_path.is_file():
                continue
            files.append(file_path.relative_to(plugin_root).as_posix())
    return sorted(files)


class PatternResolver:
    """Expands a pattern spec against one plugin directory."""

    def __init__(self, patterns: List[str], log: Optional[Any] = None) -> None:
        self.patterns = list(patterns)
        self._logger = log or logger

    async def resolve(self, plugin_root: Union[str, Path]) -> ResolvedFileSet:
        """Match every pattern against ``plugin_root``.

        Args:
            plugin_root: Plugin directory the patterns are relative to

        Returns:
            The deduplicated file set (possibly empty)
        """
        plugin_root = Path(plugin_root).resolve()
        loop = asyncio.get_running_loop()
        candidates = await loop.run_in_executor(None, list_plugin_files, plugin_root)
        files: Dict[str, Path] = {}

        for pattern in self.patterns:
            try:
                matcher = compile_pattern(relative_pattern(pattern))
            except PatternMatchError as e:
                self._logger.warning("Pattern match failed", pattern=pattern, error=str(e))
                continue

            for relative in candidates:
                if relative in files or not matcher.match(relative):
                    continue
                absolute = plugin_root / relative
                if not await aiofiles.os.path.isfile(absolute):
                    self._logger.warning("File vanished, skipping", path=relative)
                    continue
                files[relative] = absolute

        return ResolvedFileSet(files)


async def resolve(patterns: List[str], plugin_root: Union[str, Path]) -> ResolvedFileSet:
    return await PatternResolver(patterns).resolve(plugin_root)
