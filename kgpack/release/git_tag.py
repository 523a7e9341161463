"""Create and push the release tag for the current ``package.json`` version.

Meant to run from a pre-push hook; nothing here ever fails the caller.
"""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import structlog

from kgpack.release.version import to_tag

logger = structlog.get_logger("kgpack.git_tag")

TAG_MESSAGE = "crawler-plugins {tag}"


@dataclass
class TagOutcome:
    tag: Optional[str] = None
    existed: bool = False
    created: bool = False
    pushed: bool = False
    error: Optional[str] = None


class GitCommandError(Exception):
    """A git invocation exited non-zero."""

    def __init__(self, args: List[str], output: str) -> None:
        super().__init__(f"git {' '.join(args)} failed: {output}")
        self.output = output


def run_git(args: List[str], cwd: Optional[Union[str, Path]] = None) -> str:
    """Run git and return its stripped stdout."""
    try:
        completed = subprocess.run(
            ["git", *args],
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise GitCommandError(args, str(e)) from e
    if completed.returncode != 0:
        raise GitCommandError(args, (completed.stderr or completed.stdout).strip())
    return completed.stdout.strip()


def read_version(repo_root: Path) -> str:
    package_json = repo_root / "package.json"
    data = json.loads(package_json.read_text(encoding="utf-8"))
    version = str(data.get("version") or "").strip() if isinstance(data, dict) else ""
    if not version:
        raise ValueError(f"Missing version in {package_json}")
    return version


def ensure_tag(repo_root: Optional[Union[str, Path]] = None, push: bool = True) -> TagOutcome:
    """Make sure ``v<version>`` exists locally, and push it when newly created.

    Args:
        repo_root: Repository root; discovered with ``git rev-parse`` when None
        push: Push a newly created tag to ``origin``

    Returns:
        What happened; failures are logged as warnings and set ``error``
    """
    outcome = TagOutcome()
    try:
        root = Path(repo_root) if repo_root else Path(run_git(["rev-parse", "--show-toplevel"]))
        outcome.tag = to_tag(read_version(root))

        try:
            existing = run_git(["tag", "-l", outcome.tag], cwd=root)
        except GitCommandError:
            existing = ""
        if existing == outcome.tag:
            outcome.existed = True
            logger.info("Tag already exists, skipping", tag=outcome.tag)
            return outcome

        try:
            run_git(["tag", "-a", outcome.tag, "-m", TAG_MESSAGE.format(tag=outcome.tag)], cwd=root)
        except GitCommandError as e:
            outcome.error = e.output
            logger.warning("Failed to create tag", tag=outcome.tag, error=e.output)
            return outcome
        outcome.created = True
        logger.info("Created tag", tag=outcome.tag)

        if push:
            try:
                run_git(["push", "origin", outcome.tag], cwd=root)
            except GitCommandError as e:
                outcome.error = e.output
                logger.warning("Failed to push tag", tag=outcome.tag, error=e.output)
                return outcome
            outcome.pushed = True
            logger.info("Pushed tag to remote", tag=outcome.tag)
    except (GitCommandError, OSError, ValueError) as e:
        outcome.error = str(e)
        logger.warning("Could not ensure release tag", error=str(e))
    return outcome
