"""Utility functions and classes for kgpack."""

from kgpack.utils.exceptions import (
    ArchiveReadError,
    ArchiveWriteError,
    ConfigReadError,
    ConfigurationError,
    KgpackError,
    ManifestParseError,
    MissingRequiredFile,
    NoPluginsFound,
    PackagingError,
    PatternMatchError,
    PluginDirNotFound,
)
