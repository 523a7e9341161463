from __future__ import annotations

from typing import Any, Iterable, List, Optional


class KgpackError(Exception):
    """Base exception for all kgpack errors."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            **kwargs: Additional error information
        """
        self.message = message
        self.details = kwargs.pop("details", {})
        self.details.update(kwargs)
        super().__init__(message)

    def __str__(self) -> str:
        """String representation."""
        return f"{self.message}"


class ConfigurationError(KgpackError):
    """Exception raised when the tool configuration cannot be loaded."""

    def __init__(
            self, message: str, *, config_key: Optional[str] = None, **kwargs: Any
    ) -> None:
        """Initialize a ConfigurationError.

        Args:
            message: A descriptive error message.
            config_key: The configuration key that caused the error.
            **kwargs: Additional error information.
        """
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        super().__init__(message, details=details, **kwargs)


class ConfigReadError(KgpackError):
    """Raised when the project configuration (``project.json``) is unreadable.

    Callers treat this as non-fatal and fall back to the default patterns.
    """

    def __init__(self, message: str, *, path: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        super().__init__(message, details=details, **kwargs)


class PatternMatchError(KgpackError):
    """Raised when a single glob pattern cannot be matched."""

    def __init__(self, message: str, *, pattern: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if pattern:
            details["pattern"] = pattern
        super().__init__(message, details=details, **kwargs)
        self.pattern = pattern


class PackagingError(KgpackError):
    """Base exception for failures that abort packaging of one plugin."""

    def __init__(
            self, message: str, *, plugin_name: Optional[str] = None, **kwargs: Any
    ) -> None:
        """Initialize a PackagingError.

        Args:
            message: A descriptive error message.
            plugin_name: The plugin being packaged.
            **kwargs: Additional error information.
        """
        details = kwargs.pop("details", {})
        if plugin_name:
            details["plugin_name"] = plugin_name
        super().__init__(message, details=details, **kwargs)
        self.plugin_name = plugin_name


class MissingRequiredFile(PackagingError):
    """Raised when mandatory archive entries are absent from the file set."""

    def __init__(self, paths: Iterable[str], **kwargs: Any) -> None:
        self.paths: List[str] = list(paths)
        super().__init__(
            f"Missing required files: {', '.join(self.paths)}",
            paths=self.paths,
            **kwargs,
        )


class ArchiveWriteError(PackagingError):
    """Raised when the archive container cannot be written."""

    def __init__(self, message: str, *, path: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        super().__init__(message, details=details, **kwargs)


class ManifestParseError(PackagingError):
    """Raised when a plugin's ``manifest.json`` is missing or malformed."""

    def __init__(self, message: str, *, path: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        super().__init__(message, details=details, **kwargs)


class PluginDirNotFound(PackagingError):
    """Raised when a requested plugin directory does not exist."""

    def __init__(self, plugin_name: str, path: str, **kwargs: Any) -> None:
        super().__init__(
            f"Plugin directory not found: {path}",
            plugin_name=plugin_name,
            path=path,
            **kwargs,
        )


class ArchiveReadError(KgpackError):
    """Raised when a finished archive cannot be read for inspection."""

    def __init__(self, message: str, *, path: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        super().__init__(message, details=details, **kwargs)


class NoPluginsFound(KgpackError):
    """Raised when the plugin root contains no plugin directories."""

    def __init__(self, plugins_dir: str, **kwargs: Any) -> None:
        super().__init__(f"No plugin directories found in {plugins_dir}", plugins_dir=plugins_dir, **kwargs)


class OutputWriteError(KgpackError):
    """Raised when the output directory or a file in it cannot be written or removed."""

    def __init__(self, message: str, *, path: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        super().__init__(message, details=details, **kwargs)
