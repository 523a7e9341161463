"""Unit tests for the exceptions module."""

import pytest

from kgpack.utils.exceptions import (
    ArchiveReadError,
    ArchiveWriteError,
    ConfigReadError,
    ConfigurationError,
    KgpackError,
    ManifestParseError,
    MissingRequiredFile,
    NoPluginsFound,
    OutputWriteError,
    PackagingError,
    PatternMatchError,
    PluginDirNotFound,
)


def test_kgpack_error():
    """Test the base KgpackError class."""
    error = KgpackError("Test error message")
    assert str(error) == "Test error message"
    assert error.message == "Test error message"
    assert error.details == {}

    # Test with details
    details = {"key": "value", "number": 123}
    error = KgpackError("Test with details", details=details)
    assert error.details == details

    # Extra keyword arguments are folded into details
    error = KgpackError("Test with kwargs", extra="x")
    assert error.details == {"extra": "x"}


def test_configuration_error():
    """Test the ConfigurationError class."""
    error = ConfigurationError("Config error")
    assert "config_key" not in error.details

    error = ConfigurationError("Config error with key", config_key="packaging.archive_format")
    assert error.details["config_key"] == "packaging.archive_format"
    assert isinstance(error, KgpackError)


def test_config_read_error():
    """Test the ConfigReadError class."""
    error = ConfigReadError("Cannot read", path="/repo/project.json")
    assert error.details["path"] == "/repo/project.json"


def test_pattern_match_error():
    """Test the PatternMatchError class."""
    error = PatternMatchError("Bad glob", pattern="doc_root/*.{png")
    assert error.pattern == "doc_root/*.{png"
    assert error.details["pattern"] == "doc_root/*.{png"


def test_packaging_errors():
    """Test PackagingError and its subclasses."""
    error = PackagingError("Packaging failed", plugin_name="pixiv")
    assert error.plugin_name == "pixiv"
    assert error.details["plugin_name"] == "pixiv"

    missing = MissingRequiredFile(["manifest.json", "crawl.rhai"], plugin_name="pixiv")
    assert missing.paths == ["manifest.json", "crawl.rhai"]
    assert str(missing) == "Missing required files: manifest.json, crawl.rhai"
    assert missing.plugin_name == "pixiv"
    assert isinstance(missing, PackagingError)

    write_error = ArchiveWriteError("Disk full", path="/out/pixiv.kgpg", plugin_name="pixiv")
    assert write_error.details == {"path": "/out/pixiv.kgpg", "plugin_name": "pixiv"}
    assert isinstance(write_error, PackagingError)

    parse_error = ManifestParseError("Invalid manifest", path="manifest.json")
    assert isinstance(parse_error, PackagingError)

    not_found = PluginDirNotFound("ghost", "/repo/plugins/ghost")
    assert str(not_found) == "Plugin directory not found: /repo/plugins/ghost"
    assert not_found.plugin_name == "ghost"
    assert isinstance(not_found, PackagingError)


def test_archive_read_error_is_not_a_packaging_error():
    """Test that inspection failures are outside the packaging hierarchy."""
    error = ArchiveReadError("Unreadable", path="/out/a.kgpg")
    assert isinstance(error, KgpackError)
    assert not isinstance(error, PackagingError)


def test_no_plugins_found():
    """Test the NoPluginsFound class."""
    error = NoPluginsFound("/repo/plugins")
    assert "/repo/plugins" in str(error)
    assert error.details["plugins_dir"] == "/repo/plugins"


def test_exceptions_can_be_raised_and_caught_as_base():
    """Test catching every error through the base class."""
    with pytest.raises(KgpackError):
        raise MissingRequiredFile(["crawl.rhai"])


def test_output_write_error():
    """Test the OutputWriteError class."""
    error = OutputWriteError("Cannot remove stale output", path="packed/old.kgpg")
    assert error.details["path"] == "packed/old.kgpg"
    assert isinstance(error, KgpackError)
    assert not isinstance(error, PackagingError)
