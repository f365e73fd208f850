"""
Local filesystem — file, directory and symlink operations on this host.

Writes are atomic: data goes to a temp file in the target directory,
which is flushed, fsynced, given its owner and mode, and then renamed
over the target. A reader sees either the old file or the new one,
never a half-written one, and the temp file is removed on every error
path.
"""

from __future__ import annotations

import grp
import logging
import os
import pwd
import tempfile
import uuid

from hostconverge.adapters.base import Filesystem
from hostconverge.core.errors import ExecutionError

logger = logging.getLogger(__name__)


def _resolve_uid(owner: str | int | None) -> int:
    if owner is None:
        return -1
    if isinstance(owner, int) or str(owner).isdigit():
        return int(owner)
    try:
        return pwd.getpwnam(str(owner)).pw_uid
    except KeyError:
        raise ValueError(f"unknown user {owner!r}") from None


def _resolve_gid(group: str | int | None) -> int:
    if group is None:
        return -1
    if isinstance(group, int) or str(group).isdigit():
        return int(group)
    try:
        return grp.getgrnam(str(group)).gr_gid
    except KeyError:
        raise ValueError(f"unknown group {group!r}") from None


def _default_file_mode() -> int:
    """0666 minus the process umask (what ``open()`` would have produced)."""
    mask = os.umask(0)
    os.umask(mask)
    return 0o666 & ~mask


class LocalFilesystem(Filesystem):
    """Filesystem collaborator backed by ``os`` calls."""

    @property
    def name(self) -> str:
        return "filesystem"

    def is_available(self) -> bool:
        return True  # filesystem is always available

    def exists(self, path: str) -> bool:
        return os.path.lexists(path)

    def read_text(self, path: str) -> str:
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read()

    def write_file(
        self,
        path: str,
        data: bytes,
        owner: str | int | None = None,
        group: str | int | None = None,
        mode: int | None = None,
    ) -> None:
        parent = os.path.dirname(os.path.abspath(path))
        if not os.path.isdir(parent):
            raise ExecutionError(self.name, path, f"parent directory does not exist: {parent}")

        if mode is None:
            try:
                mode = os.stat(path).st_mode & 0o7777
            except FileNotFoundError:
                mode = _default_file_mode()

        try:
            uid, gid = _resolve_uid(owner), _resolve_gid(group)
        except ValueError as e:
            raise ExecutionError(self.name, path, str(e)) from None

        fd, tmp_path = tempfile.mkstemp(dir=parent, prefix=".hc_", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            if uid != -1 or gid != -1:
                os.chown(tmp_path, uid, gid)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, path)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise ExecutionError(self.name, path, f"write failed: {e}") from None

        logger.debug("Wrote %d bytes to %s (mode=%s)", len(data), path, oct(mode))

    def make_directory(
        self,
        path: str,
        owner: str | int | None = None,
        group: str | int | None = None,
        mode: int | None = None,
        recursive: bool = False,
    ) -> None:
        try:
            uid, gid = _resolve_uid(owner), _resolve_gid(group)
        except ValueError as e:
            raise ExecutionError(self.name, path, str(e)) from None

        try:
            if recursive:
                os.makedirs(path, exist_ok=True)
            elif not os.path.isdir(path):
                os.mkdir(path)
            # Owner and mode apply to the leaf only
            if uid != -1 or gid != -1:
                os.chown(path, uid, gid)
            if mode is not None:
                os.chmod(path, mode)
        except OSError as e:
            raise ExecutionError(self.name, path, f"mkdir failed: {e}") from None

        logger.debug("Directory ready: %s", path)

    def symlink(self, path: str, target: str) -> None:
        tmp_link = os.path.join(
            os.path.dirname(os.path.abspath(path)), f".hc_link_{uuid.uuid4().hex[:8]}",
        )
        try:
            os.symlink(target, tmp_link)
            os.replace(tmp_link, path)
        except OSError as e:
            if os.path.lexists(tmp_link):
                os.unlink(tmp_link)
            raise ExecutionError(self.name, path, f"symlink failed: {e}") from None

    def link_target(self, path: str) -> str | None:
        if not os.path.islink(path):
            return None
        return os.readlink(path)
