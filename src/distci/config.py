# config.py
from __future__ import annotations

import runpy
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError
from .model import DEFAULT_TIMEOUT

# ----------------------------------------------------------------------
# Constants
# ----------------------------------------------------------------------

QUEUE_COUNT = 4
RETRY_MULTIPLIER = 8  # empirical: failures above 8x the unit count means broken infra
RETRY_PASSES = 2
SUITE_TIMEOUT_OVERRIDES = {"benchmark": 172800}


class BuildMode(str, Enum):
    FULL = "full"                 # from-scratch build, any failure aborts
    INCREMENTAL = "incremental"   # day-to-day build, failures are recovered or skipped


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class BuildConfig(_Frozen):
    mode: BuildMode = BuildMode.FULL
    retry_with_tag: bool = False
    skip_untagged: bool = True
    ignore_packages: Tuple[str, ...] = ()
    skip_prereq_patterns: Tuple[str, ...] = ()
    scl_prefix: str = ""
    artifact_dir: str = "/tmp/tito"

    @property
    def incremental(self) -> bool:
        return self.mode is BuildMode.INCREMENTAL


class TestPlanConfig(_Frozen):
    __test__ = False

    exclude: Tuple[str, ...] = ()
    include_extended: Optional[Tuple[str, ...]] = None
    include_coverage: bool = False
    include_suite: Optional[str] = None
    include_web: bool = False

    retry_individually: bool = False
    timeout: Optional[float] = None
    suite_timeouts: Dict[str, float] = Field(default_factory=lambda: dict(SUITE_TIMEOUT_OVERRIDES))
    default_timeout: float = DEFAULT_TIMEOUT

    broker_hostname: str = "localhost"
    test_dir: str = "openshift-test/tests"
    cucumber_options: str = "--strict -f progress -f junit --out /tmp/rhc/cucumber_results"
    broker_cucumber_options: str = "--strict -f html --out /tmp/rhc/broker_cucumber.html -f progress"

    retry_multiplier: int = RETRY_MULTIPLIER
    retry_passes: int = RETRY_PASSES

    def excludes(self, group: str) -> bool:
        return group in self.exclude


class Profile(_Frozen):
    """A named distribution profile: package ignore list plus test options."""
    name: str
    build: BuildConfig = Field(default_factory=BuildConfig)
    tests: TestPlanConfig = Field(default_factory=TestPlanConfig)


# ----------------------------------------------------------------------
# Built-in profiles
# ----------------------------------------------------------------------

_FEDORA_IGNORE = (
    "openshift-origin-util-scl",
    "rubygem-openshift-origin-auth-kerberos",
    "openshift-origin-cartridge-jbossews-1.0",
    "openshift-origin-cartridge-jbossews-2.0",
    "openshift-origin-cartridge-postgresql-8.4",
    "openshift-origin-cartridge-ruby-1.8",
    "openshift-origin-cartridge-ruby-1.9-scl",
    "openshift-origin-cartridge-jbossas-7",
    "openshift-origin-cartridge-switchyard-0.6",
    "openshift-origin-cartridge-perl-5.10",
    "openshift-origin-cartridge-php-5.3",
    "openshift-origin-cartridge-python-2.6",
    "openshift-origin-cartridge-phpmyadmin-3.4",
    "openshift-origin-cartridge-jbosseap-6.0",
)

_RHEL_IGNORE = (
    "rubygem-openshift-origin-auth-kerberos",
    "openshift-origin-cartridge-jbossews-1.0",
    "openshift-origin-cartridge-jbossews-2.0",
    "openshift-origin-cartridge-jbosseap-6.0",
    "openshift-origin-cartridge-jbossas-7",
    "openshift-origin-cartridge-switchyard-0.6",
    "openshift-origin-cartridge-ruby-1.9",
    "openshift-origin-cartridge-perl-5.16",
    "openshift-origin-cartridge-php-5.4",
    "openshift-origin-cartridge-phpmyadmin-3.5",
    "openshift-origin-cartridge-postgresql-9.1",
)

BUILTIN_PROFILES: Dict[str, Profile] = {
    "fedora": Profile(
        name="fedora",
        build=BuildConfig(ignore_packages=_FEDORA_IGNORE),
        tests=TestPlanConfig(
            cucumber_options="--strict -f progress -f junit --out /tmp/rhc/cucumber_results -t ~@rhel-only",
            broker_cucumber_options="--strict -f html --out /tmp/rhc/broker_cucumber.html -f progress -t ~@rhel-only",
        ),
    ),
    "rhel": Profile(
        name="rhel",
        build=BuildConfig(ignore_packages=_RHEL_IGNORE, scl_prefix="ruby193-"),
        tests=TestPlanConfig(
            cucumber_options="--strict -f progress -f junit --out /tmp/rhc/cucumber_results -t ~@fedora-only",
            broker_cucumber_options="--strict -f html --out /tmp/rhc/broker_cucumber.html -f progress -t ~@fedora-only",
        ),
    ),
}

DEFAULT_PROFILE = "fedora"


# ----------------------------------------------------------------------
# Profile loading (built-in name or local .py file)
# ----------------------------------------------------------------------

def load_profile(name_or_path: str | Path | None = None) -> Profile:
    """
    Resolve a profile.

    Accepts:
      - None                -> the default built-in profile
      - a built-in name     -> "fedora", "rhel"
      - a path to a .py file defining either
          profile() -> Profile
          PROFILE = Profile(...)
        (a dict is accepted in place of a Profile and validated)
    """
    if name_or_path is None:
        return BUILTIN_PROFILES[DEFAULT_PROFILE]

    key = str(name_or_path)
    if key in BUILTIN_PROFILES:
        return BUILTIN_PROFILES[key]

    path = Path(key).expanduser().resolve()
    if path.suffix != ".py":
        raise ConfigurationError(
            f"Unknown profile: {key!r}",
            [f"Built-in profiles: {sorted(BUILTIN_PROFILES)}", "Or pass a path to a .py profile file"],
        )
    if not path.exists():
        raise ConfigurationError(f"Profile file not found: {path}")

    globals_dict = runpy.run_path(str(path), run_name=f"distci_profile_{path.stem}")

    if "profile" in globals_dict and callable(globals_dict["profile"]):
        raw = globals_dict["profile"]()
    elif "PROFILE" in globals_dict:
        raw = globals_dict["PROFILE"]
    else:
        raise ConfigurationError(
            f"Profile file {path.name} defines no profile",
            ["Define profile() -> Profile or PROFILE = Profile(...)"],
        )

    if isinstance(raw, Profile):
        return raw
    if isinstance(raw, dict):
        raw.setdefault("name", path.stem)
        try:
            return Profile.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid profile in {path.name}",
                [str(err["loc"]) + ": " + err["msg"] for err in e.errors()],
            ) from e
    raise ConfigurationError(
        f"Profile file {path.name} must provide a Profile or dict, got {type(raw).__name__}"
    )


def override(model: _Frozen, **changes) -> _Frozen:
    """Return a copy of a frozen config with non-None keyword overrides applied."""
    update = {k: v for k, v in changes.items() if v is not None}
    if not update:
        return model
    try:
        return model.__class__.model_validate({**model.model_dump(), **update})
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid option value",
            [str(err["loc"]) + ": " + err["msg"] for err in e.errors()],
        ) from e


def split_names(value: str | None) -> Optional[List[str]]:
    """'broker, rhc' -> ['broker', 'rhc']"""
    if value is None:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]
