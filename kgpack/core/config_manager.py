from __future__ import annotations

import json
import os
import pathlib
from copy import deepcopy
from typing import Any, Dict, List, Mapping, Optional, Set, Union

import aiofiles
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from kgpack.utils.exceptions import ConfigurationError


class ConfigSchema(BaseModel):
    """Schema for validating configuration data.

    This model defines the expected structure and default values for the
    packager configuration. Relative paths are resolved against
    ``paths.project_root``.
    """
    paths: Dict[str, Any] = Field(
        default_factory=lambda: {
            'project_root': '.',
            'plugins_dir': 'plugins',
            'output_dir': 'packed',
            'project_json': 'project.json',
            'package_json': 'package.json',
            'index_file': 'index.json',
        },
        description='Filesystem layout of the plugin repository',
    )
    packaging: Dict[str, Any] = Field(
        default_factory=lambda: {
            'archive_format': 'kgpg-v2',
            'compression_level': 9,
            'header_size': 65536,
            'required_files': ['manifest.json', 'crawl.rhai'],
            'excluded_dirs': ['node_modules', 'packed', '.git', 'plugins'],
            'archive_suffix': '.kgpg',
            'icon_source': 'icon.png',
            'icon_suffix': '.icon.png',
            'prune_doc_images': False,
            'external_packer': [],
        },
        description='Archive building settings',
    )
    repository: Dict[str, Any] = Field(
        default_factory=lambda: {
            'default_owner': 'kabegame',
            'default_name': 'crawler-plugins',
            'github_url': 'https://github.com',
        },
        description='Release repository coordinates',
    )
    logging: Dict[str, Any] = Field(
        default_factory=lambda: {
            'level': 'INFO',
            'format': 'text',
            'file': {
                'enabled': False,
                'path': 'logs/kgpack.log',
                'rotation': '10 MB',
                'retention': '5 days',
            },
            'console': {
                'enabled': True,
                'level': 'INFO',
            },
        },
        description='Logging settings',
    )

    @model_validator(mode='after')
    def validate_packaging(self) -> 'ConfigSchema':
        """Validate the archive format and compression settings."""
        archive_format = self.packaging.get('archive_format')
        if archive_format not in ('zip', 'kgpg-v2', 'external'):
            raise ValueError(f'Unsupported archive format: {archive_format}')
        level = self.packaging.get('compression_level')
        if not isinstance(level, int) or not 0 <= level <= 9:
            raise ValueError('Compression level must be an integer between 0 and 9.')
        if archive_format == 'external' and not self.packaging.get('external_packer'):
            raise ValueError('packaging.external_packer must be set for the external archive format.')
        return self

    @model_validator(mode='after')
    def validate_logging_format(self) -> 'ConfigSchema':
        """Validate that the log format is one we can render."""
        if str(self.logging.get('format', 'text')).lower() not in ('text', 'json'):
            raise ValueError('Logging format must be "text" or "json".')
        return self


class ReleaseEnvironment(BaseModel):
    """Snapshot of the CI variables that feed release version resolution.

    Read once at the process boundary and passed down explicitly.
    """
    model_config = ConfigDict(frozen=True)

    ref_name: Optional[str] = None
    repository_owner: Optional[str] = None
    repository: Optional[str] = None

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> ReleaseEnvironment:
        environ = os.environ if environ is None else environ
        return cls(
            ref_name=environ.get('GITHUB_REF_NAME') or None,
            repository_owner=environ.get('GITHUB_REPOSITORY_OWNER') or None,
            repository=environ.get('GITHUB_REPOSITORY') or None,
        )


class ConfigManager:
    """Asynchronous configuration manager for the packager.

    This manager handles loading, validating, and providing access to
    configuration settings from files and environment variables.

    Attributes:
        _config_path: Path to the configuration file
        _env_prefix: Prefix for environment variables
        _overrides: Values applied last, typically from the command line
        _config: The loaded configuration
        _loaded_from_file: Whether configuration was loaded from a file
        _env_vars_applied: Set of applied environment variables
    """

    def __init__(
            self,
            config_path: Optional[Union[str, pathlib.Path]] = None,
            env_prefix: str = 'KGPACK_',
            overrides: Optional[Dict[str, Any]] = None,
            environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
            env_prefix: Prefix for environment variables
            overrides: Dot-separated keys applied after file and environment
            environ: Environment mapping (defaults to ``os.environ``)
        """
        self._config_path = pathlib.Path(config_path) if config_path else pathlib.Path('kgpack.yaml')
        self._env_prefix = env_prefix
        self._overrides = overrides or {}
        self._environ = os.environ if environ is None else environ
        self._config: Dict[str, Any] = {}
        self._loaded_from_file = False
        self._env_vars_applied: Set[str] = set()
        self._initialized = False

    async def initialize(self) -> None:
        """Load configuration from default schema, file, and environment variables.

        Raises:
            ConfigurationError: If the file cannot be parsed or the result is invalid
        """
        self._config = ConfigSchema().model_dump()
        await self._load_from_file()
        self._apply_env_vars()
        for key, value in self._overrides.items():
            if value is not None:
                self._set_nested_value(self._config, key.split('.'), value)
        self._validate_config()
        self._initialized = True

    async def _load_from_file(self) -> None:
        """Load configuration from a file asynchronously.

        Raises:
            ConfigurationError: If the file cannot be parsed
        """
        if not self._config_path.exists():
            return

        suffix = self._config_path.suffix.lower()
        if suffix not in ('.yaml', '.yml', '.json'):
            raise ConfigurationError(
                f'Unsupported config file format: {self._config_path.suffix}',
                config_key='config_path'
            )

        try:
            async with aiofiles.open(self._config_path, 'r', encoding='utf-8') as f:
                content = await f.read()
            if suffix == '.json':
                file_config = json.loads(content)
            else:
                file_config = yaml.safe_load(content)
        except (yaml.YAMLError, json.JSONDecodeError, OSError) as e:
            raise ConfigurationError(
                f'Error parsing config file {self._config_path}: {str(e)}',
                config_key='config_path'
            ) from e

        if file_config:
            if not isinstance(file_config, dict):
                raise ConfigurationError(
                    f'Config file {self._config_path} must contain a mapping',
                    config_key='config_path'
                )
            self._merge_config(file_config)
            self._loaded_from_file = True

    def _merge_config(self, new_config: Dict[str, Any], base: Optional[Dict[str, Any]] = None) -> None:
        """Deep-merge ``new_config`` into the current configuration."""
        target = self._config if base is None else base
        for key, value in new_config.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                self._merge_config(value, target[key])
            else:
                target[key] = deepcopy(value)

    def _apply_env_vars(self) -> None:
        """Apply environment variables to the configuration.

        ``KGPACK_LOGGING__LEVEL=debug`` sets ``logging.level``.
        """
        for env_name, env_value in self._environ.items():
            if not env_name.startswith(self._env_prefix):
                continue

            config_path = env_name[len(self._env_prefix):].lower().split('__')
            if len(config_path) < 2:
                continue
            self._set_nested_value(self._config, config_path, self._parse_env_value(env_value))
            self._env_vars_applied.add(env_name)

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse environment variable values into appropriate types.

        Args:
            value: The string value from the environment

        Returns:
            The parsed value (bool, int, float, list or string)
        """
        if value.lower() in ('true', 'yes', 'on'):
            return True
        if value.lower() in ('false', 'no', 'off'):
            return False
        if value.startswith('['):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value

        try:
            if value.isdigit() or (value.startswith('-') and value[1:].isdigit()):
                return int(value)
            return float(value)
        except ValueError:
            return value

    def _set_nested_value(self, config: Dict[str, Any], path: List[str], value: Any) -> None:
        """Set a nested value in the configuration dictionary.

        Args:
            config: The configuration dictionary
            path: List of keys forming the path to the value
            value: The value to set
        """
        if not path:
            return

        if len(path) == 1:
            config[path[0]] = value
            return

        key = path[0]
        if not isinstance(config.get(key), dict):
            config[key] = {}

        self._set_nested_value(config[key], path[1:], value)

    def _validate_config(self) -> None:
        """Validate the configuration against the schema.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        try:
            self._config = ConfigSchema(**self._config).model_dump()
        except ValidationError as e:
            errors = e.errors()
            error_details = ', '.join((
                f"{'.'.join((str(loc) for loc in error['loc']))}: {error['msg']}"
                for error in errors
            ))
            raise ConfigurationError(
                f'Invalid configuration: {error_details}',
                details={'validation_errors': errors}
            ) from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key.

        Args:
            key: The configuration key (dot-separated for nested values)
            default: Default value if the key doesn't exist

        Returns:
            The configuration value or default

        Raises:
            ConfigurationError: If the manager isn't initialized
        """
        if not self._initialized:
            raise ConfigurationError(
                'Cannot access configuration before initialization',
                config_key=key
            )

        result: Any = self._config
        try:
            for part in key.split('.'):
                result = result[part]
            return result
        except (KeyError, TypeError):
            return default

    def get_path(self, key: str) -> pathlib.Path:
        """Get a ``paths.*`` entry resolved against the project root."""
        project_root = pathlib.Path(self.get('paths.project_root', '.')).resolve()
        if key == 'project_root':
            return project_root
        value = self.get(f'paths.{key}')
        if value is None:
            raise ConfigurationError(f'Unknown path setting: {key}', config_key=f'paths.{key}')
        path = pathlib.Path(value)
        return path if path.is_absolute() else project_root / path

    @property
    def loaded_from_file(self) -> bool:
        return self._loaded_from_file

    @property
    def env_vars_applied(self) -> Set[str]:
        return set(self._env_vars_applied)

    def shutdown(self) -> None:
        self._initialized = False
