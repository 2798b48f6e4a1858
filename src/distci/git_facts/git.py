# git.py
# Small wrapper around the Git CLI.
# Package directories are queried through here so the build code never
# shells out to git directly.

from __future__ import annotations

import subprocess
from typing import List, Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout, stripped.

    Raises subprocess.CalledProcessError on a non-zero exit.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def latest_commit(path: str = ".") -> str:
    """
    Return the SHA of the most recent commit touching `path`.

    Used to derive a fresh version when a package has to be re-tagged.
    """
    return _git(["log", "--pretty=format:%H", "--max-count=1", "."], cwd=path)


def tags(cwd: Optional[str] = None) -> List[str]:
    out = _git(["tag"], cwd=cwd)
    if not out:
        return []
    return out.splitlines()


def has_tag_for(name: str, cwd: Optional[str] = None) -> bool:
    """
    True if any tag in the repository mentions the package name.

    Release tooling tags as <name>-<version>-<release>; a package with no
    such tag has never been released.
    """
    try:
        return any(name in t for t in tags(cwd))
    except (subprocess.CalledProcessError, FileNotFoundError):
        return False

