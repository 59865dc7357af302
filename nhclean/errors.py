# nhclean/errors.py
"""Exception taxonomy shared by every nhclean module."""

from __future__ import annotations

from typing import Optional


class NhcleanError(Exception):
    pass


class ConfigError(NhcleanError):
    pass


class CleanError(NhcleanError):
    """Fatal condition that aborts the whole clean run."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        base = super().__str__()
        if self.path:
            return f"{base}: {self.path}"
        return base


class PrivilegeError(CleanError):
    pass


class PlanError(CleanError):
    pass


class UserRejected(CleanError):
    pass


class CommandError(CleanError):
    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode
