"""
Local accounts — users and groups in /etc/passwd and /etc/group.

Lookups use the ``pwd`` and ``grp`` modules. Changes go through
``useradd``, ``groupadd`` and ``gpasswd`` via the CommandRunner.
"""

from __future__ import annotations

import grp
import logging
import pwd
import shutil
from collections.abc import Sequence

from hostconverge.adapters.base import CLIENT_TIMEOUT, AccountManager, CommandRunner, effective_timeout

logger = logging.getLogger(__name__)


class LocalAccountManager(AccountManager):
    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return "accounts"

    def is_available(self) -> bool:
        return shutil.which("useradd") is not None

    def user_exists(self, name: str) -> bool:
        try:
            pwd.getpwnam(name)
        except KeyError:
            return False
        return True

    def create_user(
        self,
        name: str,
        home: str | None = None,
        shell: str | None = None,
        system: bool = False,
        groups: Sequence[str] = (),
        timeout: float | None = None,
    ) -> None:
        argv = ["useradd"]
        if system:
            argv.append("--system")
        if home:
            argv += ["--home-dir", home, "--create-home"]
        if shell:
            argv += ["--shell", shell]
        if groups:
            argv += ["--groups", ",".join(groups)]
        argv.append(name)
        self._runner.run(argv, timeout=effective_timeout(CLIENT_TIMEOUT, timeout)).check(self.name, name)
        logger.info("Created user %s", name)

    def group_exists(self, name: str) -> bool:
        try:
            grp.getgrnam(name)
        except KeyError:
            return False
        return True

    def group_members(self, name: str) -> set[str]:
        """Explicit members plus users whose primary group this is."""
        try:
            entry = grp.getgrnam(name)
        except KeyError:
            return set()
        members = set(entry.gr_mem)
        members.update(p.pw_name for p in pwd.getpwall() if p.pw_gid == entry.gr_gid)
        return members

    def create_group(self, name: str, system: bool = False, timeout: float | None = None) -> None:
        argv = ["groupadd"] + (["--system"] if system else []) + [name]
        self._runner.run(argv, timeout=effective_timeout(CLIENT_TIMEOUT, timeout)).check(self.name, name)
        logger.info("Created group %s", name)

    def add_group_member(self, group: str, user: str, timeout: float | None = None) -> None:
        self._runner.run(
            ["gpasswd", "-a", user, group], timeout=effective_timeout(CLIENT_TIMEOUT, timeout),
        ).check(self.name, group)
        logger.info("Added %s to group %s", user, group)
