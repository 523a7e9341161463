"""Command-line interface for kgpack.

This module provides the ``kgpack`` command with three subcommands:
``pack`` builds plugin archives, ``index`` writes the release catalog and
``tag`` creates the release tag for the current ``package.json`` version.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog

from kgpack.__version__ import __version__
from kgpack.core.config_manager import ConfigManager, ReleaseEnvironment
from kgpack.core.logging_manager import LoggingManager
from kgpack.plugin_system.orchestrator import (
    BatchOrchestrator,
    PackMode,
    dedupe_names,
    discover_plugin_dirs,
)
from kgpack.plugin_system.package import PluginPackager
from kgpack.plugin_system.patterns import load_pattern_spec
from kgpack.release.git_tag import ensure_tag
from kgpack.release.index import IndexGenerator
from kgpack.release.version import resolve_release
from kgpack.utils.exceptions import ConfigurationError, KgpackError, NoPluginsFound

OUTPUT_DIR_FLAGS = ("--outDir", "--outdir", "--out-dir", "--outputDir", "--output-dir")

logger = structlog.get_logger("kgpack.cli")


def pack_mode(args: argparse.Namespace) -> Tuple[PackMode, List[str]]:
    """Work out the pack mode from parsed arguments.

    ``--only`` wins over a positional plugin name.
    """
    if args.only is not None:
        return PackMode.ONLY, dedupe_names(args.only)
    if args.plugin:
        return PackMode.SINGLE, [args.plugin]
    return PackMode.ALL, []


async def load_config(args: argparse.Namespace) -> ConfigManager:
    overrides: Dict[str, Any] = {
        "paths.project_root": args.project_root,
        "logging.format": args.log_format,
    }
    if args.log_level:
        overrides["logging.level"] = args.log_level
        overrides["logging.console.level"] = args.log_level
    config = ConfigManager(config_path=args.config, overrides=overrides)
    await config.initialize()
    return config


def resolve_output_dir(args: argparse.Namespace, config: ConfigManager) -> Path:
    if args.out_dir:
        return Path(args.out_dir).resolve()
    return config.get_path("output_dir")


async def pack_command(args: argparse.Namespace, config: ConfigManager) -> int:
    """Handle the pack command.

    Args:
        args: Command-line arguments
        config: Initialized configuration

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    mode, names = pack_mode(args)
    packaging_config = config.get("packaging", {})
    patterns = await load_pattern_spec(config.get_path("project_json"))
    packager = PluginPackager(patterns, packaging_config)
    orchestrator = BatchOrchestrator(
        plugins_dir=config.get_path("plugins_dir"),
        output_dir=resolve_output_dir(args, config),
        packager=packager,
        packaging_config=packaging_config,
    )
    batch = await orchestrator.run(mode, names, kgpg_only=args.kgpg_only)
    return batch.exit_code


async def index_command(args: argparse.Namespace, config: ConfigManager) -> int:
    """Handle the index command.

    Args:
        args: Command-line arguments
        config: Initialized configuration

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    plugins_dir = config.get_path("plugins_dir")
    output_dir = resolve_output_dir(args, config)
    names = discover_plugin_dirs(plugins_dir, config.get("packaging.excluded_dirs", []))
    if not names:
        raise NoPluginsFound(str(plugins_dir))

    release = await resolve_release(
        config.get_path("package_json"),
        env=ReleaseEnvironment.from_environ(),
        tag=args.tag,
        owner=args.repo_owner,
        name=args.repo_name,
        repository_config=config.get("repository", {}),
    )
    generator = IndexGenerator(release, archive_suffix=config.get("packaging.archive_suffix", ".kgpg"))
    catalog = await generator.generate([plugins_dir / name for name in names], output_dir)
    await generator.write(catalog, output_dir / config.get("paths.index_file", "index.json"))
    return 0


async def tag_command(args: argparse.Namespace, config: ConfigManager) -> int:
    """Handle the tag command. Always succeeds."""
    repo_root = Path(args.project_root) if args.project_root else None
    ensure_tag(repo_root=repo_root, push=not args.no_push)
    return 0


COMMANDS = {
    "pack": pack_command,
    "index": index_command,
    "tag": tag_command,
}


async def run(args: argparse.Namespace) -> int:
    try:
        config = await load_config(args)
    except ConfigurationError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    logging_manager = LoggingManager(config)
    logging_manager.initialize()
    try:
        return await COMMANDS[args.command](args, config)
    except KgpackError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        return 1
    finally:
        logging_manager.shutdown()
        config.shutdown()


def add_output_dir_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(*OUTPUT_DIR_FLAGS, dest="out_dir", metavar="DIR", default=None,
                        help="Output directory (default: paths.output_dir)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kgpack",
        description="Package crawler plugins into .kgpg archives and publish their index",
        allow_abbrev=False,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", default=None, help="Tool configuration file (YAML or JSON)")
    parser.add_argument("--project-root", default=None, help="Plugin repository root")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error", "critical"],
                        default=None, help="Log level")
    parser.add_argument("--log-format", choices=["text", "json"], default=None, help="Log output format")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Pack command
    pack_parser = subparsers.add_parser("pack", help="Build plugin archives", allow_abbrev=False)
    pack_parser.add_argument("plugin", nargs="?", help="Package only this plugin")
    pack_parser.add_argument("--only", "--plugins", dest="only", nargs="+", action="extend", metavar="NAME",
                             help="Package only these plugins and remove other archives (comma separated ok)")
    add_output_dir_argument(pack_parser)
    pack_parser.add_argument("--kgpg-only", "--kgpgOnly", dest="kgpg_only", action="store_true",
                             help="Do not copy plugin icons next to the archives")

    # Index command
    index_parser = subparsers.add_parser("index", help="Generate index.json for built archives",
                                         allow_abbrev=False)
    index_parser.add_argument("--repo-owner", default=None, help="GitHub repository owner")
    index_parser.add_argument("--repo-name", default=None, help="GitHub repository name")
    index_parser.add_argument("--tag", default=None, help="Release tag")
    add_output_dir_argument(index_parser)

    # Tag command
    tag_parser = subparsers.add_parser("tag", help="Create the release tag for the package.json version")
    tag_parser.add_argument("--no-push", action="store_true", help="Create the tag without pushing it")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command-line interface.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1
    if args.command == "pack" and args.only is not None and not dedupe_names(args.only):
        parser.error("--only requires at least one plugin name")

    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
