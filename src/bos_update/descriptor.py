"""
bos_update - Package Descriptor
Package metadata plus the fixed paths and cadence used by the lifecycle hooks.
"""

import copy
import json
import logging
import shlex
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Optional

from croniter import croniter

from bos_update.errors import DescriptorError

logger = logging.getLogger(__name__)

# Shipped descriptor and script live inside the package
DATA_DIR = Path(str(resources.files("bos_update") / "data"))
DEFAULT_CONFIG_PATH = DATA_DIR / "package.json"

DEFAULT_CONFIG = {
    "package": {
        "name": "bos_update",
        "version": None,
        "release": "1",
        "maintainer": "Braiins <braiins@braiins.com>",
        "section": "utils",
        "category": "Utilities",
        "title": "Automatic check for latest updates",
        "depends": ["+at", "+@BUSYBOX_CONFIG_ASH_RANDOM_SUPPORT"],
        "description": "Periodically calls opkg update to get latest packages.",
    },
    "artifact": {
        "source": "bos_update.sh",
        "destination": "/usr/sbin/bos_update.sh",
        "mode": "0755",
    },
    "schedule": {
        "minute": "0",
        "hour": "0",
        "day": "*",
        "month": "*",
        "weekday": "*",
        "tag": "update",
        "dedupe": True,
    },
    "crontab": {
        "path": "/etc/crontabs/root",
    },
    "scheduler": {
        "restart_command": ["/etc/init.d/cron", "restart"],
        "timeout": 30,
    },
}


@dataclass
class PackageInfo:
    """Metadata shown to the package manager."""
    name: str
    release: str
    maintainer: str
    section: str
    category: str
    title: str
    description: str
    version: Optional[str] = None
    depends: list[str] = field(default_factory=list)

    @property
    def full_version(self) -> str:
        """opkg version string: <version>-<release>, or the bare release."""
        if self.version:
            return f"{self.version}-{self.release}"
        return str(self.release)

    @property
    def runtime_depends(self) -> list[str]:
        """Package dependencies installed alongside this one."""
        return [d[1:] for d in self.depends if d.startswith("+") and not d.startswith("+@")]

    @property
    def config_selects(self) -> list[str]:
        """Build configuration symbols selected by this package."""
        return [d[2:] for d in self.depends if d.startswith("+@")]


@dataclass
class ArtifactSpec:
    """The executable installed by the package."""
    source: Path
    destination: Path
    mode: int = 0o755


@dataclass
class ScheduleSpec:
    """Cron cadence and logging tag for the artifact."""
    minute: str = "0"
    hour: str = "0"
    day: str = "*"
    month: str = "*"
    weekday: str = "*"
    tag: str = "update"
    dedupe: bool = True

    @property
    def cadence(self) -> str:
        return " ".join([self.minute, self.hour, self.day, self.month, self.weekday])


@dataclass
class PackageDescriptor:
    """Everything the install and uninstall hooks need to know."""
    package: PackageInfo
    artifact: ArtifactSpec
    schedule: ScheduleSpec
    crontab_path: Path
    restart_command: list[str]
    restart_timeout: int

    @classmethod
    def from_config(cls, config: dict, base_dir: Optional[Path] = None) -> "PackageDescriptor":
        """
        Build a descriptor from a config dict merged over the defaults.

        Args:
            config: Partial configuration, same layout as DEFAULT_CONFIG.
            base_dir: Directory relative artifact sources are resolved against.

        Raises:
            DescriptorError: if a value is missing or malformed.
        """
        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise DescriptorError(f"Config must be a JSON object, got {type(config).__name__}")
        merged = _merge(copy.deepcopy(DEFAULT_CONFIG), config)
        base_dir = base_dir or DATA_DIR

        pkg = merged["package"]
        depends = pkg.get("depends") or []
        if isinstance(depends, str):
            depends = depends.split()
        if not isinstance(depends, list) or not all(isinstance(d, str) for d in depends):
            raise DescriptorError(f"package.depends must be a list of strings: {depends!r}")
        package = PackageInfo(
            name=str(_require(pkg, "name", "package")),
            release=str(_require(pkg, "release", "package")),
            version=pkg.get("version"),
            maintainer=str(pkg.get("maintainer", "")),
            section=str(pkg.get("section", "")),
            category=str(pkg.get("category", "")),
            title=str(pkg.get("title", "")),
            depends=list(depends),
            description=str(pkg.get("description", "")),
        )

        art = merged["artifact"]
        source = Path(str(_require(art, "source", "artifact")))
        if not source.is_absolute():
            source = base_dir / source
        destination = Path(str(_require(art, "destination", "artifact")))
        if not destination.is_absolute():
            raise DescriptorError(f"artifact.destination must be absolute: {destination}")
        if any(ch.isspace() for ch in str(destination)):
            raise DescriptorError(f"artifact.destination must not contain whitespace: {destination}")
        artifact = ArtifactSpec(source=source, destination=destination, mode=_parse_mode(art.get("mode")))

        sched = merged["schedule"]
        schedule = ScheduleSpec(
            minute=str(sched["minute"]),
            hour=str(sched["hour"]),
            day=str(sched["day"]),
            month=str(sched["month"]),
            weekday=str(sched["weekday"]),
            tag=str(sched["tag"]),
            dedupe=bool(sched.get("dedupe", True)),
        )
        if not croniter.is_valid(schedule.cadence):
            raise DescriptorError(f"Invalid cron cadence: {schedule.cadence!r}")
        if not schedule.tag or any(ch.isspace() for ch in schedule.tag):
            raise DescriptorError(f"Invalid logger tag: {schedule.tag!r}")

        restart = merged["scheduler"].get("restart_command") or []
        if isinstance(restart, str):
            restart = shlex.split(restart)
        if not isinstance(restart, list) or not all(isinstance(arg, str) for arg in restart):
            raise DescriptorError(f"scheduler.restart_command must be a string or list of strings: {restart!r}")

        timeout = merged["scheduler"].get("timeout", 30)
        try:
            if isinstance(timeout, bool):
                raise TypeError(timeout)
            timeout = int(timeout)
        except (TypeError, ValueError):
            raise DescriptorError(f"scheduler.timeout must be a number of seconds: {timeout!r}")
        if timeout <= 0:
            raise DescriptorError(f"scheduler.timeout must be positive: {timeout}")

        return cls(
            package=package,
            artifact=artifact,
            schedule=schedule,
            crontab_path=Path(str(_require(merged["crontab"], "path", "crontab"))),
            restart_command=list(restart),
            restart_timeout=timeout,
        )

    def render_control(self) -> str:
        """Render the opkg control stanza for this package."""
        lines = [
            f"Package: {self.package.name}",
            f"Version: {self.package.full_version}",
        ]
        if self.package.runtime_depends:
            lines.append(f"Depends: {', '.join(self.package.runtime_depends)}")
        lines += [
            f"Section: {self.package.section}",
            "Architecture: all",
            f"Maintainer: {self.package.maintainer}",
            f"Description: {self.package.title}",
        ]
        for line in self.package.description.strip().splitlines():
            lines.append(f" {line.strip() or '.'}")
        return "\n".join(lines) + "\n"


def load_descriptor(config_path: Optional[Path] = None) -> PackageDescriptor:
    """
    Load a descriptor from a JSON file, falling back to defaults.

    Relative artifact sources in the file are resolved against the
    file's directory.
    """
    config_path = config_path or DEFAULT_CONFIG_PATH
    config = {}
    base_dir = None
    if config_path.exists():
        try:
            with open(config_path) as f:
                config = json.load(f)
            base_dir = config_path.resolve().parent
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load config {config_path}: {e}")
            config = {}
    else:
        logger.debug(f"No config at {config_path}, using defaults")
    return PackageDescriptor.from_config(config, base_dir=base_dir)


def _merge(base: dict, override: dict, prefix: str = "") -> dict:
    """Recursively merge known sections of override into base."""
    for key, value in override.items():
        name = f"{prefix}{key}"
        if key not in base:
            logger.debug(f"Ignoring unknown config key: {name}")
            continue
        if isinstance(base[key], dict):
            if not isinstance(value, dict):
                raise DescriptorError(f"{name} must be a JSON object, got {type(value).__name__}")
            _merge(base[key], value, prefix=f"{name}.")
        else:
            base[key] = value
    return base


def _require(section: dict, key: str, name: str):
    value = section.get(key)
    if value is None or value == "":
        raise DescriptorError(f"{name}.{key} is required")
    return value


def _parse_mode(mode) -> int:
    """Parse an octal mode string such as "0755"."""
    # JSON integers are ambiguous (755 vs 0o755), only strings are accepted
    if not isinstance(mode, str):
        raise DescriptorError(f"artifact.mode must be an octal string like \"0755\", got {mode!r}")
    try:
        value = int(mode, 8)
    except ValueError:
        raise DescriptorError(f"Invalid file mode: {mode!r}")
    if not 0 <= value <= 0o7777:
        raise DescriptorError(f"File mode out of range: {mode!r}")
    return value
