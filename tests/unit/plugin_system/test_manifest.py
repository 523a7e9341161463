"""Tests for plugin manifest parsing."""

from __future__ import annotations

import json

import pydantic
import pytest

from kgpack.plugin_system.manifest import PluginManifest
from kgpack.utils.exceptions import ManifestParseError


class TestPluginManifest:
    """Tests for the PluginManifest model."""

    def test_defaults(self):
        manifest = PluginManifest.from_dict("pixiv", {})
        assert manifest.id == "pixiv"
        assert manifest.name == "pixiv"
        assert manifest.version == "1.0.0"
        assert manifest.description == ""
        assert manifest.author == ""

    def test_empty_values_fall_back(self):
        manifest = PluginManifest.from_dict("pixiv", {"name": "", "version": "", "author": None})
        assert manifest.name == "pixiv"
        assert manifest.version == "1.0.0"
        assert manifest.author == ""

    def test_id_comes_from_directory(self):
        manifest = PluginManifest.from_dict("pixiv", {"id": "other", "name": "Pixiv"})
        assert manifest.id == "pixiv"

    def test_unknown_keys_kept(self):
        manifest = PluginManifest.from_dict("pixiv", {"homepage": "https://example.com"})
        assert manifest.model_extra["homepage"] == "https://example.com"
        assert "homepage" not in manifest.header_excerpt()

    def test_coercion(self):
        manifest = PluginManifest.from_dict("pixiv", {"version": 2, "author": {"name": "Kabe", "email": "k@x"}})
        assert manifest.version == "2"
        assert manifest.author == "Kabe"

    def test_frozen(self):
        manifest = PluginManifest.from_dict("pixiv", {})
        with pytest.raises(pydantic.ValidationError):
            manifest.name = "changed"

    def test_header_excerpt(self):
        manifest = PluginManifest.from_dict("pixiv", {"name": "Pixiv", "version": "1.2.0"})
        assert list(manifest.header_excerpt()) == ["id", "name", "version", "description", "author"]


class TestLoad:
    """Tests for reading manifest.json."""

    @pytest.mark.asyncio
    async def test_load(self, tmp_path):
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps({"name": "Pixiv", "description": "説明"}), encoding="utf-8")
        manifest = await PluginManifest.load(path, "pixiv")
        assert manifest.name == "Pixiv"
        assert manifest.description == "説明"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["{broken", "[1, 2]", '"just a string"'])
    async def test_invalid(self, tmp_path, content):
        path = tmp_path / "manifest.json"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ManifestParseError) as exc_info:
            await PluginManifest.load(path, "pixiv")
        assert exc_info.value.plugin_name == "pixiv"

    @pytest.mark.asyncio
    async def test_missing(self, tmp_path):
        with pytest.raises(ManifestParseError, match="not found"):
            await PluginManifest.load(tmp_path / "manifest.json", "pixiv")
