"""
bos_update - Exceptions
"""


class BosUpdateError(Exception):
    """Base class for hook errors."""
    pass


class DescriptorError(BosUpdateError):
    """Invalid package descriptor configuration."""
    pass


class InstallError(BosUpdateError):
    """A filesystem step of install or uninstall failed."""
    pass
