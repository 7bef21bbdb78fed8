"""
bos_update - Package Hooks
Installs the periodic update check and registers it with crond.
"""

from bos_update.descriptor import PackageDescriptor, load_descriptor
from bos_update.installer import ScheduledTaskInstaller, InstallResult, UninstallResult

__all__ = [
    "PackageDescriptor",
    "load_descriptor",
    "ScheduledTaskInstaller",
    "InstallResult",
    "UninstallResult",
]
