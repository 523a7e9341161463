"""Pytest configuration and fixtures for kgpack tests."""

import json
from pathlib import Path
from typing import Any, Callable, Dict, Generator, Optional

import pytest
import structlog


DEFAULT_MANIFEST = {
    "name": "Sample Plugin",
    "version": "1.2.0",
    "description": "A sample crawler",
    "author": "kabegame",
}


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Keep structlog configuration from leaking between tests."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """An empty plugin repository with a plugins/ directory."""
    (tmp_path / "plugins").mkdir()
    return tmp_path


@pytest.fixture
def plugins_dir(project_root: Path) -> Path:
    return project_root / "plugins"


@pytest.fixture
def output_dir(project_root: Path) -> Path:
    return project_root / "packed"


@pytest.fixture
def make_plugin(plugins_dir: Path) -> Callable[..., Path]:
    """Factory creating a plugin directory.

    ``files`` maps relative paths to text or bytes. ``manifest`` of None
    omits manifest.json; ``crawl=False`` omits crawl.rhai.
    """

    def _make(
            name: str,
            manifest: Optional[Dict[str, Any]] = DEFAULT_MANIFEST,
            crawl: bool = True,
            files: Optional[Dict[str, Any]] = None,
    ) -> Path:
        plugin_dir = plugins_dir / name
        plugin_dir.mkdir(parents=True)
        if manifest is not None:
            (plugin_dir / "manifest.json").write_text(json.dumps(manifest), encoding="utf-8")
        if crawl:
            (plugin_dir / "crawl.rhai").write_text(f'// {name}\nlet url = "https://example.com";\n',
                                                   encoding="utf-8")
        for relative, content in (files or {}).items():
            target = plugin_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(content, encoding="utf-8")
        return plugin_dir

    return _make


@pytest.fixture
def png_bytes() -> bytes:
    """A few bytes that look like a PNG file."""
    return b"\x89PNG\r\n\x1a\n" + bytes(range(64))
