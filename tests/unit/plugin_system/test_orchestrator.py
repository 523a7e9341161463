"""Tests for batch packaging."""

from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from kgpack.plugin_system.orchestrator import (
    BatchOrchestrator,
    PackMode,
    dedupe_names,
    discover_plugin_dirs,
)
from kgpack.plugin_system.package import PluginPackager
from kgpack.plugin_system.patterns import DEFAULT_PATTERNS
from kgpack.utils.exceptions import OutputWriteError


@pytest.fixture
def orchestrator(plugins_dir: Path, output_dir: Path) -> BatchOrchestrator:
    return BatchOrchestrator(plugins_dir, output_dir, PluginPackager(list(DEFAULT_PATTERNS)))


@pytest.fixture
def three_plugins(make_plugin, png_bytes):
    make_plugin("alpha", files={"icon.png": png_bytes})
    make_plugin("beta")
    make_plugin("gamma", crawl=False)


def output_names(output_dir: Path):
    return sorted(p.name for p in output_dir.iterdir())


class TestAllMode:
    """Tests for packaging every plugin."""

    @pytest.mark.asyncio
    async def test_partial_failure(self, orchestrator, three_plugins, output_dir):
        batch = await orchestrator.run(PackMode.ALL)

        assert batch.success_count == 2
        assert batch.failure_count == 1
        assert batch.exit_code == 1
        failed = [r for r in batch.results if not r.success]
        assert failed[0].name == "gamma"
        assert "crawl.rhai" in failed[0].error
        assert failed[0].archive is None

        for name in ("alpha", "beta"):
            assert zipfile.is_zipfile(output_dir / f"{name}.kgpg")
        assert not (output_dir / "gamma.kgpg").exists()

    @pytest.mark.asyncio
    async def test_success_copies_icons(self, orchestrator, make_plugin, png_bytes, output_dir):
        make_plugin("alpha", files={"icon.png": png_bytes})
        make_plugin("beta")

        batch = await orchestrator.run("all")

        assert batch.exit_code == 0
        assert output_names(output_dir) == ["alpha.icon.png", "alpha.kgpg", "beta.kgpg"]
        assert (output_dir / "alpha.icon.png").read_bytes() == png_bytes

    @pytest.mark.asyncio
    async def test_kgpg_only_skips_icons(self, orchestrator, make_plugin, png_bytes, output_dir):
        make_plugin("alpha", files={"icon.png": png_bytes})

        await orchestrator.run(PackMode.ALL, kgpg_only=True)

        assert output_names(output_dir) == ["alpha.kgpg"]

    @pytest.mark.asyncio
    async def test_removes_stale_outputs(self, orchestrator, make_plugin, output_dir):
        make_plugin("alpha")
        output_dir.mkdir()
        (output_dir / "removed.kgpg").write_bytes(b"old")
        (output_dir / "removed.icon.png").write_bytes(b"old")
        (output_dir / "index.json").write_text("{}")

        await orchestrator.run(PackMode.ALL)

        assert output_names(output_dir) == ["alpha.kgpg", "index.json"]

    @pytest.mark.asyncio
    async def test_removes_interrupted_writes(self, orchestrator, make_plugin, output_dir):
        make_plugin("alpha")
        output_dir.mkdir()
        (output_dir / "ghost.kgpg.tmp").write_bytes(b"partial")
        (output_dir / "alpha.kgpg.tmp").write_bytes(b"partial")

        await orchestrator.run(PackMode.ALL)

        assert output_names(output_dir) == ["alpha.kgpg"]

    @pytest.mark.asyncio
    async def test_output_dir_not_creatable(self, plugins_dir, project_root, make_plugin):
        make_plugin("alpha")
        blocked = project_root / "packed"
        blocked.write_text("not a directory")
        orchestrator = BatchOrchestrator(plugins_dir, blocked, PluginPackager(list(DEFAULT_PATTERNS)))

        with pytest.raises(OutputWriteError):
            await orchestrator.run(PackMode.ALL)

    @pytest.mark.asyncio
    async def test_excluded_directories(self, orchestrator, make_plugin, plugins_dir):
        make_plugin("alpha")
        (plugins_dir / "node_modules").mkdir()
        (plugins_dir / ".git").mkdir()
        (plugins_dir / "stray.txt").write_text("x")

        batch = await orchestrator.run(PackMode.ALL)

        assert [r.name for r in batch.results] == ["alpha"]

    @pytest.mark.asyncio
    async def test_no_plugins(self, orchestrator, output_dir):
        batch = await orchestrator.run(PackMode.ALL)

        assert batch.results == []
        assert batch.exit_code == 1
        assert output_dir.is_dir()


class TestSingleMode:
    """Tests for packaging one named plugin."""

    @pytest.mark.asyncio
    async def test_single(self, orchestrator, three_plugins, output_dir):
        output_dir.mkdir()
        (output_dir / "other.kgpg").write_bytes(b"keep")

        batch = await orchestrator.run(PackMode.SINGLE, ["beta"])

        assert batch.exit_code == 0
        assert output_names(output_dir) == ["beta.kgpg", "other.kgpg"]

    @pytest.mark.asyncio
    async def test_missing_directory(self, orchestrator, output_dir):
        batch = await orchestrator.run(PackMode.SINGLE, ["ghost"])

        assert batch.exit_code == 1
        assert "Plugin directory not found" in batch.results[0].error

    @pytest.mark.asyncio
    async def test_requires_one_name(self, orchestrator):
        with pytest.raises(ValueError):
            await orchestrator.run(PackMode.SINGLE, [])


class TestOnlyMode:
    """Tests for packaging an allow-list."""

    @pytest.mark.asyncio
    async def test_idempotent_cleanup(self, orchestrator, three_plugins, output_dir):
        output_dir.mkdir()
        (output_dir / "gamma.kgpg").write_bytes(b"stale")
        (output_dir / "zeta.kgpg").write_bytes(b"stale")

        first = await orchestrator.run(PackMode.ONLY, ["alpha,beta"])
        second = await orchestrator.run(PackMode.ONLY, ["alpha", "beta", "alpha"])

        assert first.exit_code == 0
        assert second.exit_code == 0
        assert [r.name for r in second.results] == ["alpha", "beta"]
        kgpgs = sorted(p.name for p in output_dir.glob("*.kgpg"))
        assert kgpgs == ["alpha.kgpg", "beta.kgpg"]

    @pytest.mark.asyncio
    async def test_kgpg_only_keeps_icon_files(self, orchestrator, three_plugins, output_dir):
        output_dir.mkdir()
        (output_dir / "zeta.icon.png").write_bytes(b"icon")

        await orchestrator.run(PackMode.ONLY, ["alpha"], kgpg_only=True)

        assert output_names(output_dir) == ["alpha.kgpg", "zeta.icon.png"]

    @pytest.mark.asyncio
    async def test_removes_interrupted_writes_of_kept_plugins(self, orchestrator, three_plugins, output_dir):
        output_dir.mkdir()
        (output_dir / "alpha.kgpg.tmp").write_bytes(b"partial")
        (output_dir / "zeta.kgpg.tmp").write_bytes(b"partial")

        await orchestrator.run(PackMode.ONLY, ["alpha"], kgpg_only=True)

        assert output_names(output_dir) == ["alpha.kgpg"]

    @pytest.mark.asyncio
    async def test_removes_other_icons(self, orchestrator, three_plugins, output_dir):
        output_dir.mkdir()
        (output_dir / "zeta.icon.png").write_bytes(b"icon")

        await orchestrator.run(PackMode.ONLY, ["alpha"])

        assert output_names(output_dir) == ["alpha.icon.png", "alpha.kgpg"]

    @pytest.mark.asyncio
    async def test_missing_plugin_is_a_failure(self, orchestrator, three_plugins):
        batch = await orchestrator.run(PackMode.ONLY, ["alpha", "ghost"])

        assert batch.success_count == 1
        assert batch.failure_count == 1
        assert batch.exit_code == 1


def test_dedupe_names():
    assert dedupe_names(["a,b", " c ", "a", ",", "b"]) == ["a", "b", "c"]


def test_discover_plugin_dirs(plugins_dir, make_plugin):
    make_plugin("zeta")
    make_plugin("alpha")
    (plugins_dir / "packed").mkdir()
    assert discover_plugin_dirs(plugins_dir) == ["alpha", "zeta"]
    assert discover_plugin_dirs(plugins_dir / "missing") == []
