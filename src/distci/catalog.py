# catalog.py
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from .model import Package

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Package catalog
# ---------------------------------------------------------------------
# Every RPM .spec file under the source tree describes one package:
#
#   Name:          %{?scl:%scl_prefix}rubygem-foo
#   Version:       1.4.2
#   BuildRequires: ruby-devel >= 1.9, %{?scl:%scl_prefix}rubygem-bar
#   Requires:      rubygem-bar
#
# The catalog only reads; it never builds or installs anything.
# ---------------------------------------------------------------------

_FIELD_RE = re.compile(r"^(Name|Version|BuildRequires|Requires)\s*:\s*(.+?)\s*$", re.IGNORECASE)
_SCL_MACRO_RE = re.compile(r"%\{\?scl:%\{?scl_prefix\}?\}|%\{\?scl_prefix\}|%\{scl_prefix\}")
_VERSION_OP_RE = re.compile(r"\s*(>=|<=|=|>|<)\s*\S+")
_MACRO_RE = re.compile(r"%\{[^}]*\}")


def _iter_spec_files(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*.spec")):
        if p.is_file() and ".git" not in p.parts:
            yield p


def _split_requires(value: str, scl_prefix: str) -> List[str]:
    value = _SCL_MACRO_RE.sub(scl_prefix, value)
    value = _VERSION_OP_RE.sub("", value)
    names = []
    for token in re.split(r"[,\s]+", value):
        token = _MACRO_RE.sub("", token).strip()
        # skip file/path requirements and leftover macro noise
        if not token or token.startswith("/") or token.startswith("%"):
            continue
        names.append(token)
    return names


def parse_spec(spec_file: str | Path, scl_prefix: str = "") -> Package:
    """Read one .spec file into a Package."""
    path = Path(spec_file)
    name: Optional[str] = None
    version = "0.0.0"
    build_requires: Set[str] = set()
    runtime_requires: Set[str] = set()

    for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        # stop at the first non-preamble section
        if line.startswith("%description") or line.startswith("%prep"):
            break
        m = _FIELD_RE.match(line)
        if not m:
            continue
        key, value = m.group(1).lower(), m.group(2)

        if key == "name" and name is None:
            name = _MACRO_RE.sub("", _SCL_MACRO_RE.sub(scl_prefix, value)).strip()
        elif key == "version":
            version = value.strip()
        elif key == "buildrequires":
            build_requires.update(_split_requires(value, scl_prefix))
        elif key == "requires":
            runtime_requires.update(_split_requires(value, scl_prefix))

    if not name:
        raise ValueError(f"Spec file has no Name: field: {path}")

    # a self-reference only shows up through macros; drop it
    build_requires.discard(name)

    return Package(
        name=name,
        source_dir=str(path.parent),
        build_requires=frozenset(build_requires),
        runtime_requires=frozenset(runtime_requires),
        version=version,
        spec_file=str(path),
    )


def load_catalog(
    source_root: str | Path,
    *,
    scl_prefix: str = "",
    ignore: Iterable[str] = (),
) -> Dict[str, Package]:
    """
    Scan a source tree for .spec files and return {name: Package}.

    Packages named in `ignore` are left out entirely.
    """
    root = Path(source_root).expanduser().resolve()
    if not root.exists():
        raise FileNotFoundError(f"Source tree not found: {root}")

    ignored = set(ignore)
    catalog: Dict[str, Package] = {}
    for spec in _iter_spec_files(root):
        pkg = parse_spec(spec, scl_prefix=scl_prefix)
        if pkg.name in ignored:
            logger.debug("ignoring %s (%s)", pkg.name, spec)
            continue
        if pkg.name in catalog:
            raise ValueError(
                f"Duplicate package name '{pkg.name}': {catalog[pkg.name].spec_file} and {spec}"
            )
        catalog[pkg.name] = pkg

    logger.debug("loaded %d packages from %s", len(catalog), root)
    return catalog


def select_buildable(
    packages: Iterable[Package],
    *,
    is_tagged: Optional[Callable[[Package], bool]] = None,
    on_skip: Optional[Callable[[Package], None]] = None,
) -> List[Package]:
    """
    Keep packages that have a release tag.

    A package that was never tagged has no version to build from, so it is
    skipped rather than failed. `is_tagged=None` keeps everything.
    """
    selected: List[Package] = []
    for p in sorted(packages, key=lambda p: p.name):
        if is_tagged is not None and not is_tagged(p):
            if on_skip is not None:
                on_skip(p)
            continue
        selected.append(p)
    return selected


def required_packages(catalog: Dict[str, Package]) -> List[str]:
    """
    External packages needed to build and run the catalog.

    Union of build and runtime requirements minus anything the catalog
    itself provides (by name or install name).
    """
    provided = set(catalog) | {p.install_name for p in catalog.values()}
    needed: Set[str] = set()
    for p in catalog.values():
        needed |= p.build_requires
        needed |= p.runtime_requires
    return sorted(needed - provided)
