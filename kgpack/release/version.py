"""Release version and repository resolution.

The release tag is taken, first match wins, from an explicit override, a
CI reference name that looks like a version tag, or the version declared
in ``package.json``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import aiofiles
import structlog

from kgpack.core.config_manager import ReleaseEnvironment

LATEST = "latest"
TAG_PATTERN = re.compile(r"^v\d+\.\d+\.\d+.*$", re.IGNORECASE)

DEFAULT_OWNER = "kabegame"
DEFAULT_REPO_NAME = "crawler-plugins"
DEFAULT_GITHUB_URL = "https://github.com"

logger = structlog.get_logger("kgpack.version")


def to_tag(version: str) -> str:
    version = version.strip()
    return version if version.startswith("v") else f"v{version}"


def resolve_release_tag(
        explicit_tag: Optional[str],
        ci_ref_name: Optional[str],
        manifest_version: Optional[str],
) -> str:
    """Pick the release tag for a batch run.

    Args:
        explicit_tag: Tag given on the command line, used verbatim
        ci_ref_name: CI reference name, used only when it looks like ``vX.Y.Z...``
        manifest_version: Version from ``package.json``

    Returns:
        The tag, or ``"latest"`` when nothing usable was given
    """
    if explicit_tag:
        return explicit_tag
    if ci_ref_name and TAG_PATTERN.match(ci_ref_name):
        return ci_ref_name
    if manifest_version:
        return LATEST if manifest_version == LATEST else to_tag(manifest_version)
    return LATEST


def resolve_repository(
        explicit_owner: Optional[str],
        explicit_name: Optional[str],
        env: Optional[ReleaseEnvironment] = None,
        default_owner: str = DEFAULT_OWNER,
        default_name: str = DEFAULT_REPO_NAME,
) -> Tuple[str, str]:
    """Resolve the repository owner and name.

    Explicit values win over the CI environment, which wins over defaults.
    """
    env = env or ReleaseEnvironment()
    env_name = None
    if env.repository:
        parts = env.repository.split("/")
        env_name = parts[1] if len(parts) > 1 and parts[1] else None
    owner = explicit_owner or env.repository_owner or default_owner
    name = explicit_name or env_name or default_name
    return owner, name


async def read_package_version(package_json: Union[str, Path]) -> Optional[str]:
    """Read ``version`` from ``package.json``.

    Returns:
        The version string, or None when the file is unreadable or has none
    """
    package_json = Path(package_json)
    try:
        async with aiofiles.open(package_json, "r", encoding="utf-8") as f:
            data = json.loads(await f.read())
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Failed to read package version, using latest", path=str(package_json), error=str(e))
        return None

    version = data.get("version") if isinstance(data, dict) else None
    if version is None or not str(version).strip():
        return None
    return str(version).strip()


@dataclass(frozen=True)
class ReleaseInfo:
    """Resolved release coordinates for one catalog."""

    tag: str
    owner: str
    name: str
    github_url: str = DEFAULT_GITHUB_URL

    @property
    def repository_url(self) -> str:
        return f"{self.github_url.rstrip('/')}/{self.owner}/{self.name}"

    @property
    def release_url(self) -> str:
        return f"{self.repository_url}/releases/tag/{self.tag}"

    @property
    def download_base_url(self) -> str:
        return f"{self.repository_url}/releases/download/{self.tag}"

    def download_url(self, filename: str) -> str:
        return f"{self.download_base_url}/{filename}"


async def resolve_release(
        package_json: Union[str, Path],
        env: Optional[ReleaseEnvironment] = None,
        tag: Optional[str] = None,
        owner: Optional[str] = None,
        name: Optional[str] = None,
        repository_config: Optional[dict] = None,
) -> ReleaseInfo:
    """Combine tag and repository resolution into a :class:`ReleaseInfo`."""
    env = env or ReleaseEnvironment()
    repository_config = repository_config or {}
    package_version = await read_package_version(package_json)
    release_tag = resolve_release_tag(tag, env.ref_name, package_version)
    repo_owner, repo_name = resolve_repository(
        owner,
        name,
        env,
        default_owner=repository_config.get("default_owner", DEFAULT_OWNER),
        default_name=repository_config.get("default_name", DEFAULT_REPO_NAME),
    )
    logger.info(
        "Resolved release",
        repository=f"{repo_owner}/{repo_name}",
        package_version=package_version or LATEST,
        tag=release_tag,
    )
    return ReleaseInfo(
        tag=release_tag,
        owner=repo_owner,
        name=repo_name,
        github_url=repository_config.get("github_url", DEFAULT_GITHUB_URL),
    )
