"""
bos_update - Scheduled Task Installer
Installs the update-check script and registers it with crond.
"""

import os
import shutil
import subprocess
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from bos_update.crontab import CrontabEntry, CrontabFile
from bos_update.descriptor import PackageDescriptor
from bos_update.errors import BosUpdateError, InstallError

logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    """Result of an install or preinst hook."""
    success: bool
    release: Optional[str] = None
    entries_removed: int = 0
    error_message: Optional[str] = None


@dataclass
class UninstallResult:
    """Result of the postrm hook."""
    success: bool
    entries_removed: int = 0
    scheduler_restarted: bool = False
    error_message: Optional[str] = None


class ScheduledTaskInstaller:
    """Runs the package lifecycle hooks for one descriptor."""

    def __init__(
        self,
        descriptor: PackageDescriptor,
        root: Optional[Path] = None,
        runner: Optional[Callable] = None,
    ):
        """
        Args:
            descriptor: Package paths, cadence and restart command.
            root: Install root (IPKG_INSTROOT) prepended to every target path.
                  crond is never restarted for an install root, it belongs
                  to an image being built, not to the running system.
            runner: Used to run the scheduler restart command.
        """
        self.descriptor = descriptor
        self.root = Path(root) if root else None
        self._runner = runner or subprocess.run

    def _rooted(self, path: Path) -> Path:
        if self.root is None:
            return path
        return self.root / path.relative_to(path.anchor)

    @property
    def offline(self) -> bool:
        """True when operating on an install root instead of the live system."""
        return self.root is not None

    @property
    def artifact_path(self) -> Path:
        return self._rooted(self.descriptor.artifact.destination)

    @property
    def crontab_path(self) -> Path:
        return self._rooted(self.descriptor.crontab_path)

    def _make_entry(self) -> CrontabEntry:
        schedule = self.descriptor.schedule
        return CrontabEntry.for_artifact(
            schedule.cadence,
            self.descriptor.artifact.destination,
            schedule.tag,
        )

    def _ensure_directories(self) -> None:
        for directory in (self.crontab_path.parent, self.artifact_path.parent):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise InstallError(f"Cannot create directory {directory}: {e}")

    def _copy_artifact(self) -> None:
        """Copy the script into place, replacing any previous copy whole."""
        source = self.descriptor.artifact.source
        if not source.is_file():
            raise InstallError(f"Artifact source not found: {source}")

        target = self.artifact_path
        tmp = target.with_name(f".{target.name}.tmp")
        try:
            shutil.copyfile(source, tmp)
            os.chmod(tmp, self.descriptor.artifact.mode)
            os.replace(tmp, target)
        except OSError as e:
            if tmp.exists():
                tmp.unlink()
            raise InstallError(f"Cannot install {source} to {target}: {e}")
        logger.info(f"Installed {target}")

    def register(self) -> int:
        """
        Add the cron entry for the artifact.

        With dedupe enabled any previous entries for the artifact are
        replaced, otherwise the entry is appended.

        Returns:
            Number of previous entries removed.
        """
        crontab = CrontabFile.load(self.crontab_path)
        entry = self._make_entry()
        removed = 0
        if self.descriptor.schedule.dedupe:
            removed = crontab.replace(self.descriptor.artifact.destination, entry)
        else:
            crontab.append(entry)
        if crontab.save():
            logger.info(f"Registered '{entry.format()}' in {self.crontab_path}")
        else:
            logger.info(f"Cron entry already present in {self.crontab_path}")
        return removed

    def install(self) -> InstallResult:
        """
        Full install: directories, artifact, cron entry.

        Any failing step aborts the install.
        """
        package = self.descriptor.package
        logger.info(f"Installing {package.name} {package.full_version}")

        try:
            self._ensure_directories()
            self._copy_artifact()
            removed = self.register()
        except BosUpdateError as e:
            logger.error(f"Install of {package.name} failed: {e}")
            return InstallResult(success=False, release=package.full_version, error_message=str(e))

        return InstallResult(success=True, release=package.full_version, entries_removed=removed)

    def preinst(self) -> InstallResult:
        """Register the cron entry only; the package manager copies files."""
        package = self.descriptor.package
        try:
            self._ensure_directories()
            removed = self.register()
        except BosUpdateError as e:
            logger.error(f"preinst of {package.name} failed: {e}")
            return InstallResult(success=False, release=package.full_version, error_message=str(e))
        return InstallResult(success=True, release=package.full_version, entries_removed=removed)

    def restart_scheduler(self) -> bool:
        """Restart crond so it rereads the crontab."""
        command = self.descriptor.restart_command
        if not command:
            logger.info("No scheduler restart command configured")
            return False
        try:
            result = self._runner(
                command,
                capture_output=True,
                text=True,
                timeout=self.descriptor.restart_timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Failed to restart scheduler: {e}")
            return False

        if result.returncode == 0:
            logger.info("Restarted scheduler")
            return True
        logger.warning(f"Scheduler restart exited {result.returncode}: {result.stderr}")
        return False

    def uninstall(self) -> UninstallResult:
        """
        Remove the cron entry and restart the scheduler.

        On the live system the restart runs even when there was nothing to
        remove. A failed restart is logged but does not fail the uninstall.
        """
        package = self.descriptor.package
        destination = self.descriptor.artifact.destination
        removed = 0
        error = None
        try:
            crontab = CrontabFile.load(self.crontab_path)
            count = crontab.remove(destination)
            crontab.save()
            removed = count
        except BosUpdateError as e:
            logger.error(f"Uninstall of {package.name} failed: {e}")
            error = str(e)

        if error is None:
            if removed:
                logger.info(f"Removed {removed} cron entr{'y' if removed == 1 else 'ies'} for {destination}")
            else:
                logger.info(f"No cron entries for {destination}")

        if self.offline:
            logger.info(f"Not restarting scheduler for install root {self.root}")
            restarted = False
        else:
            restarted = self.restart_scheduler()

        return UninstallResult(
            success=error is None,
            entries_removed=removed,
            scheduler_restarted=restarted,
            error_message=error,
        )

    def get_status(self) -> dict:
        """Installed artifact, matching cron entries and next run."""
        artifact = self.artifact_path
        crontab = CrontabFile.load(self.crontab_path)
        entries = crontab.find(self.descriptor.artifact.destination)
        next_run = entries[0].next_run() if entries else None
        return {
            "package": self.descriptor.package.name,
            "release": self.descriptor.package.full_version,
            "artifact": str(artifact),
            "artifact_installed": artifact.is_file(),
            "artifact_executable": artifact.is_file() and os.access(artifact, os.X_OK),
            "crontab": str(self.crontab_path),
            "entries": [e.format() if e.raw is None else e.raw for e in entries],
            "next_run": next_run.isoformat() if next_run else None,
        }
