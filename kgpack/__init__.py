"""kgpack: packages crawler plugins into ``.kgpg`` archives and publishes their index."""

from kgpack.__version__ import __version__

__all__ = ["__version__"]
