# nhclean/fsops.py
"""
fsops.py - filesystem primitives used by discovery, planning and execution

Everything that touches the disk goes through FileSystem so the planners
can be exercised against a temporary tree, or a subclass that injects
failures.
"""

from __future__ import annotations

import ctypes
import errno
import os
import sys
from typing import List

from nhclean.logging import get_logger

logger = get_logger("fsops")

# results of FileSystem.probe_nofollow
ACCESS_OK = "ok"
ACCESS_MISSING = "missing"
ACCESS_DENIED = "denied"

# <fcntl.h>; os does not export the *at() flags
AT_SYMLINK_NOFOLLOW = 0x20 if sys.platform == "darwin" else 0x100

_libc = None


def _faccessat(dirfd: int, name: str, mode: int, flags: int) -> int:
    """faccessat(2) through libc. Returns 0 on success, otherwise the errno."""
    global _libc
    if _libc is None:
        _libc = ctypes.CDLL(None, use_errno=True)
    ctypes.set_errno(0)
    if _libc.faccessat(dirfd, os.fsencode(name), mode, flags) == 0:
        return 0
    return ctypes.get_errno() or errno.EIO


class FileSystem:
    def list_dir(self, path: str) -> List[str]:
        """Full paths of the entries of ``path``, sorted. Raises OSError."""
        return [os.path.join(path, name) for name in sorted(os.listdir(path))]

    def read_link(self, path: str) -> str:
        return os.readlink(path)

    def is_symlink(self, path: str) -> bool:
        return os.path.islink(path)

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(path)

    def link_mtime(self, path: str) -> float:
        """Modification time of the entry itself, final symlink not followed."""
        return os.lstat(path).st_mtime

    def probe_nofollow(self, path: str) -> str:
        """
        Check that ``path`` exists and is writable without traversing a
        trailing symlink, relative to an open handle on the parent
        directory (faccessat with AT_SYMLINK_NOFOLLOW).

        Returns ACCESS_OK, ACCESS_MISSING (ENOENT) or ACCESS_DENIED
        (EACCES); any other errno is raised as OSError.
        """
        parent, name = os.path.split(os.path.abspath(path))
        try:
            dirfd = os.open(parent, os.O_RDONLY | os.O_DIRECTORY)
        except FileNotFoundError:
            return ACCESS_MISSING
        except PermissionError:
            return ACCESS_DENIED
        try:
            err = _faccessat(dirfd, name, os.F_OK | os.W_OK, AT_SYMLINK_NOFOLLOW)
        finally:
            os.close(dirfd)
        if err == 0:
            return ACCESS_OK
        if err == errno.ENOENT:
            return ACCESS_MISSING
        if err == errno.EACCES:
            return ACCESS_DENIED
        raise OSError(err, os.strerror(err), path)

    def remove(self, path: str) -> None:
        os.remove(path)


def remove_path_nofail(fs: FileSystem, path: str) -> bool:
    """Remove one path; failures are logged and reported as False, never raised."""
    logger.info("Removing %s", path)
    try:
        fs.remove(path)
        return True
    except OSError as e:
        logger.warning("Failed to remove path %s: %s", path, os.strerror(e.errno) if e.errno else e)
        return False
