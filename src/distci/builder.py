# builder.py
from __future__ import annotations

import glob
import logging
import re
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from .config import BuildConfig
from .dag import BuildSchedule, filter_prerequisites
from .errors import BuildFailure
from .git_facts.git import latest_commit
from .model import Package
from .ui.console import get_console

logger = logging.getLogger(__name__)

# Per-package build statuses
OK = "ok"
RETAGGED = "retagged"
DEPS_INSTALLED = "deps-installed"
FAILED = "failed"


# ----------------------------------------------------------------------
# Collaborators
# ----------------------------------------------------------------------

class Builder(Protocol):
    def build(self, package: Package) -> bool: ...

    def artifacts(self, package: Package) -> List[str]: ...


class Installer(Protocol):
    def install(self, artifact_paths: Sequence[str]) -> bool: ...

    def install_names(self, names: Sequence[str], skip_broken: bool = False) -> bool: ...

    def missing(self, names: Sequence[str]) -> List[str]: ...


class VersionTagger(Protocol):
    def latest_commit(self, package: Package) -> str: ...

    def next_version(self, current_version: str, commit_id: str) -> str: ...

    def tag(self, package: Package, version: str) -> bool: ...


# ----------------------------------------------------------------------
# Version bumping
# ----------------------------------------------------------------------

_GIT_SUFFIX_RE = re.compile(r"\.git[0-9a-f]+$")


def next_version(current_version: str, commit_id: str) -> str:
    """
    Derive a new version for re-tagging a package.

      next_version("1.4.2", "abc1234ffff") -> "1.4.3.gitabc1234"
      next_version("1.4.3.gitabc1234", "def5678") -> "1.4.4.gitdef5678"
    """
    base = _GIT_SUFFIX_RE.sub("", current_version.strip())
    parts = base.split(".") if base else []
    for i in range(len(parts) - 1, -1, -1):
        if parts[i].isdigit():
            parts[i] = str(int(parts[i]) + 1)
            break
    else:
        parts.append("1")
    version = ".".join(parts)
    short = commit_id.strip()[:7]
    if short:
        version += f".git{short}"
    return version


# ----------------------------------------------------------------------
# Shell-backed collaborators
# ----------------------------------------------------------------------

def _sh(cmd: str, cwd: Optional[str] = None) -> subprocess.CompletedProcess:
    logger.debug("$ %s (cwd=%s)", cmd, cwd or ".")
    proc = subprocess.run(
        cmd,
        shell=True,
        cwd=cwd,
        text=True,
        capture_output=True,
    )
    if proc.returncode != 0:
        logger.debug("exit=%s stderr=%s", proc.returncode, proc.stderr[-4000:])
    return proc


class TitoBuilder:
    """Builds a test RPM in the package directory with tito."""

    def __init__(self, artifact_dir: str = "/tmp/tito"):
        self.artifact_dir = Path(artifact_dir)

    def build(self, package: Package) -> bool:
        shutil.rmtree(self.artifact_dir, ignore_errors=True)
        self.artifact_dir.mkdir(parents=True, exist_ok=True)
        return _sh("tito build --rpm --test", cwd=package.source_dir).returncode == 0

    def artifacts(self, package: Package) -> List[str]:
        pattern = str(self.artifact_dir / "**" / f"{package.install_name}*.rpm")
        return sorted(glob.glob(pattern, recursive=True))


class YumInstaller:
    def missing(self, names: Sequence[str]) -> List[str]:
        out = []
        for name in names:
            proc = _sh(f"rpm -q {shlex.quote(name)}")
            if proc.returncode != 0 or "is not installed" in proc.stdout:
                out.append(name)
        return out

    def install_names(self, names: Sequence[str], skip_broken: bool = False) -> bool:
        todo = self.missing(names)
        if not todo:
            return True
        args = "--skip-broken " if skip_broken else ""
        return _sh(f"yum install -y {args}{' '.join(shlex.quote(n) for n in todo)}").returncode == 0

    def install(self, artifact_paths: Sequence[str]) -> bool:
        if not artifact_paths:
            return False
        return _sh(f"rpm -Uvh --force {' '.join(shlex.quote(p) for p in artifact_paths)}").returncode == 0


class TitoTagger:
    def latest_commit(self, package: Package) -> str:
        return latest_commit(package.source_dir)

    def next_version(self, current_version: str, commit_id: str) -> str:
        return next_version(current_version, commit_id)

    def tag(self, package: Package, version: str) -> bool:
        cmd = f"tito tag --accept-auto-changelog --use-version={shlex.quote(version)}"
        return _sh(cmd, cwd=package.source_dir).returncode == 0


# ----------------------------------------------------------------------
# Build executor
# ----------------------------------------------------------------------

def install_prerequisites(schedule: BuildSchedule, config: BuildConfig, installer: Installer) -> List[str]:
    """Install external build requirements before the first phase. Returns what was requested."""
    console = get_console()
    prereqs, skipped = filter_prerequisites(schedule.external_prerequisites, config.skip_prereq_patterns)
    if skipped:
        console.print_names("Excluded prerequisites", skipped)
    console.print_names("Installing prerequisites", prereqs)
    if prereqs and not installer.install_names(prereqs):
        raise BuildFailure(package="*", reason="Unable to install required packages")
    return prereqs


def _recover(
    package: Package,
    catalog_names: set,
    config: BuildConfig,
    builder: Builder,
    installer: Installer,
    tagger: VersionTagger,
) -> str:
    """Incremental-mode handling of a failed build."""
    console = get_console()

    external = sorted(package.build_requires - catalog_names)
    missing = installer.missing(external) if external else []
    if missing:
        console.print_names(f"{package.name}: installing missing build requirements", missing)
        if not installer.install_names(missing, skip_broken=True):
            return FAILED
        return DEPS_INSTALLED

    if not config.retry_with_tag:
        console.print_info(f"Package {package.name} failed to build.")
        return FAILED

    try:
        commit = tagger.latest_commit(package)
        version = tagger.next_version(package.version, commit)
        console.print_info(f"current version {package.version} next version {version}")
        tagged = tagger.tag(package, version)
    except (subprocess.CalledProcessError, OSError) as e:
        logger.error("Re-tagging %s failed: %s", package.name, e)
        console.print_info(f"Package {package.name} could not be re-tagged: {e}")
        return FAILED
    if not tagged:
        console.print_info(f"Package {package.name} could not be tagged as {version}.")
        return FAILED
    if not builder.build(package):
        console.print_info(f"Package {package.name} failed to build after re-tagging.")
        return FAILED
    return RETAGGED


def build_all(
    schedule: BuildSchedule,
    config: BuildConfig,
    *,
    builder: Builder,
    installer: Installer,
    tagger: Optional[VersionTagger] = None,
    install_prereqs: bool = True,
) -> Dict[str, str]:
    """
    Build every package phase by phase.

    Returns {package name: status}. In full mode the first failure raises
    BuildFailure; in incremental mode failures are recovered where possible
    and otherwise recorded as "failed" while the build moves on.
    """
    console = get_console()
    if config.retry_with_tag and tagger is None:
        raise ValueError("retry_with_tag needs a VersionTagger")

    if install_prereqs:
        install_prerequisites(schedule, config, installer)

    later = set(schedule.later_prerequisites)
    catalog_names = {p.name for p in schedule.packages}
    if later:
        console.print_names("Packages that are prereqs for later phases", sorted(later))

    results: Dict[str, str] = {}

    for idx, phase in enumerate(schedule.phases):
        console.print_phase_started(idx + 1, [p.name for p in phase])

        for package in sorted(phase, key=lambda p: p.name):
            console.print_package_started(package.name, package.source_dir)

            if builder.build(package):
                status = OK
            elif not config.incremental:
                raise BuildFailure(package=package.name, reason="Unable to build package")
            else:
                status = _recover(package, catalog_names, config, builder, installer, tagger)

            if status in (OK, RETAGGED) and (package.name in later or config.incremental):
                console.print_info("    Installing...")
                if not installer.install(builder.artifacts(package)):
                    if not config.incremental:
                        raise BuildFailure(package=package.name, reason="Unable to install package")
                    status = FAILED

            results[package.name] = status
            console.print_package_status(package.name, status)

    return results
