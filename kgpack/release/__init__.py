"""Release catalog generation and tagging."""

from kgpack.release.index import Catalog, CatalogEntry, IndexGenerator
from kgpack.release.version import ReleaseInfo, resolve_release_tag, resolve_repository

__all__ = [
    "Catalog",
    "CatalogEntry",
    "IndexGenerator",
    "ReleaseInfo",
    "resolve_release_tag",
    "resolve_repository",
]
