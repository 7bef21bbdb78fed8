"""
bos_update - Crontab Store
Reads and writes a crond spool file as a list of structured entries.

Lines that are not job entries (comments, blank lines, variable
assignments) are kept verbatim. Entries, including @daily style ones,
are looked up by the executable path their command runs, not by substring.
"""

import os
import re
import shlex
import logging
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from croniter import croniter

from bos_update.errors import InstallError

logger = logging.getLogger(__name__)

LOGGER_SUFFIX_RE = re.compile(r"^(?P<command>.*?)\s+2>&1\s*\|\s*logger\s+-t\s+(?P<tag>\S+)\s*$")
ENV_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*\s*=")
SHELL_SEPARATOR_RE = re.compile(r"[\s;&|()<>`]+")

# @keyword cadences and their five-field equivalents, None if not time based
SPECIAL_CADENCES = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
    "@reboot": None,
}


@dataclass
class CrontabEntry:
    """A single job line of a crontab."""
    cadence: str                # five fields, or an @keyword
    command: str
    tag: Optional[str] = None   # logger -t tag, None if output is not piped
    raw: Optional[str] = None   # original text, kept for untouched lines

    def format(self) -> str:
        """Render the entry as a crontab line."""
        line = f"{self.cadence} {self.command}"
        if self.tag:
            line += f" 2>&1 | logger -t {self.tag}"
        return line

    def command_words(self) -> set[str]:
        """Words of the command with shell quoting and separators removed."""
        try:
            tokens = shlex.split(self.command)
        except ValueError:
            tokens = self.command.split()
        words = set()
        for token in tokens:
            words.update(w for w in SHELL_SEPARATOR_RE.split(token) if w)
        return words

    def references(self, path: Union[str, Path]) -> bool:
        """True if the entry's command runs the given path."""
        return str(path) in self.command_words()

    def next_run(self, base: Optional[datetime] = None) -> Optional[datetime]:
        """Next time crond will start this entry, None for @reboot."""
        cadence = SPECIAL_CADENCES.get(self.cadence, self.cadence)
        if cadence is None:
            return None
        return croniter(cadence, base or datetime.now()).get_next(datetime)

    @classmethod
    def for_artifact(cls, cadence: str, path: Union[str, Path], tag: Optional[str]) -> "CrontabEntry":
        fields = cadence.split()
        if len(fields) != 5:
            raise ValueError(f"Expected 5 cadence fields, got {cadence!r}")
        return cls(" ".join(fields), command=str(path), tag=tag)


def parse_line(line: str) -> Union[CrontabEntry, str]:
    """
    Parse one crontab line.

    Returns:
        A CrontabEntry for job lines, otherwise the line unchanged.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return line
    if ENV_ASSIGNMENT_RE.match(stripped):
        return line

    if stripped.startswith("@"):
        parts = stripped.split(None, 1)
        if len(parts) < 2 or parts[0] not in SPECIAL_CADENCES:
            logger.debug(f"Keeping unparseable crontab line: {line!r}")
            return line
        cadence, rest = parts
    else:
        parts = stripped.split(None, 5)
        if len(parts) < 6:
            return line
        cadence = " ".join(parts[:5])
        if not croniter.is_valid(cadence):
            logger.debug(f"Keeping unparseable crontab line: {line!r}")
            return line
        rest = parts[5]

    tag = None
    match = LOGGER_SUFFIX_RE.match(rest)
    if match:
        rest = match.group("command")
        tag = match.group("tag")
    return CrontabEntry(cadence, command=rest, tag=tag, raw=line)


class CrontabFile:
    """
    A crontab held in memory as parsed lines.

    Changes are only written by save(), and only if something changed.
    """

    DEFAULT_MODE = 0o600

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lines: list[Union[CrontabEntry, str]] = []
        self.exists = False
        self._dirty = False

    @classmethod
    def load(cls, path: Path) -> "CrontabFile":
        """
        Read a crontab. A missing file loads as empty.

        Raises:
            InstallError: if the file exists but cannot be read.
        """
        crontab = cls(path)
        try:
            text = crontab.path.read_text()
        except FileNotFoundError:
            logger.debug(f"Crontab {crontab.path} does not exist yet")
            return crontab
        except OSError as e:
            raise InstallError(f"Cannot read crontab {crontab.path}: {e}")
        crontab.exists = True
        crontab.lines = [parse_line(line) for line in text.splitlines()]
        return crontab

    @property
    def dirty(self) -> bool:
        return self._dirty

    def entries(self) -> list[CrontabEntry]:
        return [line for line in self.lines if isinstance(line, CrontabEntry)]

    def find(self, path: Union[str, Path]) -> list[CrontabEntry]:
        """Entries that run the given executable path."""
        return [e for e in self.entries() if e.references(path)]

    def append(self, entry: CrontabEntry) -> None:
        self.lines.append(entry)
        self._dirty = True

    def remove(self, path: Union[str, Path]) -> int:
        """
        Delete every entry that runs the given path.

        Returns:
            Number of entries removed.
        """
        kept = [
            line for line in self.lines
            if not (isinstance(line, CrontabEntry) and line.references(path))
        ]
        removed = len(self.lines) - len(kept)
        if removed:
            self.lines = kept
            self._dirty = True
        return removed

    def replace(self, path: Union[str, Path], entry: CrontabEntry) -> int:
        """
        Make entry the only one running path.

        An existing identical single entry is left alone.

        Returns:
            Number of previous entries removed.
        """
        existing = self.find(path)
        if len(existing) == 1 and existing[0].format() == entry.format():
            return 0
        removed = self.remove(path)
        self.append(entry)
        return removed

    def render(self) -> str:
        out = []
        for line in self.lines:
            if isinstance(line, CrontabEntry):
                out.append(line.raw if line.raw is not None else line.format())
            else:
                out.append(line)
        return "\n".join(out) + "\n" if out else ""

    def save(self) -> bool:
        """
        Write the crontab back if it changed.

        The new content goes to a temporary file in the same directory and
        is renamed over the old one.

        Returns:
            True if the file was written.

        Raises:
            InstallError: if the file cannot be written.
        """
        if not self._dirty:
            return False

        mode = self.DEFAULT_MODE
        if self.exists:
            try:
                mode = self.path.stat().st_mode & 0o777
            except OSError as e:
                logger.debug(f"Cannot stat {self.path}, using mode {oct(mode)}: {e}")

        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            with os.fdopen(fd, "w") as f:
                f.write(self.render())
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise InstallError(f"Cannot write crontab {self.path}: {e}")

        logger.debug(f"Wrote crontab {self.path}")
        self.exists = True
        self._dirty = False
        return True
