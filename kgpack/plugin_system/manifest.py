from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Union

import aiofiles
import pydantic
from pydantic import ConfigDict, field_validator

from kgpack.utils.exceptions import ManifestParseError

MANIFEST_FILE = 'manifest.json'
DEFAULT_PLUGIN_VERSION = '1.0.0'


class PluginManifest(pydantic.BaseModel):
    """Descriptor read from a plugin's ``manifest.json``.

    ``id`` is the plugin directory name and is never taken from the file.
    Unknown keys are kept on the model but play no part in packaging.
    """
    model_config = ConfigDict(frozen=True, extra='allow')

    id: str
    name: str = ''
    version: str = DEFAULT_PLUGIN_VERSION
    description: str = ''
    author: str = ''

    @pydantic.model_validator(mode='before')
    @classmethod
    def default_name_to_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get('name'):
            data = {**data, 'name': data.get('id', '')}
        return data

    @field_validator('version', mode='before')
    @classmethod
    def default_empty_version(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_PLUGIN_VERSION
        return str(v)

    @field_validator('name', 'description', 'author', mode='before')
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        if v is None:
            return ''
        if isinstance(v, dict):
            # {"name": "...", "email": "..."} style authors
            return str(v.get('name', ''))
        return str(v)

    @classmethod
    def from_dict(cls, plugin_id: str, data: Dict[str, Any]) -> PluginManifest:
        payload = {k: v for k, v in data.items() if k != 'id'}
        return cls(id=plugin_id, **payload)

    @classmethod
    async def load(cls, path: Union[str, Path], plugin_id: str) -> PluginManifest:
        """Read and validate a manifest file.

        Args:
            path: Path to ``manifest.json``
            plugin_id: Directory name of the plugin

        Returns:
            The parsed manifest

        Raises:
            ManifestParseError: If the file is missing, not JSON, or invalid
        """
        path = Path(path)
        try:
            async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                data = json.loads(await f.read())
        except FileNotFoundError as e:
            raise ManifestParseError(
                f'Manifest file not found: {path}', path=str(path), plugin_name=plugin_id
            ) from e
        except (OSError, UnicodeDecodeError) as e:
            raise ManifestParseError(
                f'Cannot read manifest file {path}: {e}', path=str(path), plugin_name=plugin_id
            ) from e
        except json.JSONDecodeError as e:
            raise ManifestParseError(
                f'Invalid manifest file: {e}', path=str(path), plugin_name=plugin_id
            ) from e

        if not isinstance(data, dict):
            raise ManifestParseError(
                'Invalid manifest file: top-level value must be an object',
                path=str(path),
                plugin_name=plugin_id,
            )
        try:
            return cls.from_dict(plugin_id, data)
        except pydantic.ValidationError as e:
            raise ManifestParseError(
                f'Invalid manifest data: {e}', path=str(path), plugin_name=plugin_id
            ) from e

    def header_excerpt(self) -> Dict[str, str]:
        """Fields embedded in the KGPG v2 archive header."""
        return {
            'id': self.id,
            'name': self.name,
            'version': self.version,
            'description': self.description,
            'author': self.author,
        }
