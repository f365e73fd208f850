"""
Git checkouts through the ``git`` CLI.
"""

from __future__ import annotations

import logging
import os
import shutil

from hostconverge.adapters.base import CommandRunner, VersionControl

logger = logging.getLogger(__name__)


class GitVersionControl(VersionControl):
    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return "git"

    def is_available(self) -> bool:
        return shutil.which("git") is not None

    def is_checked_out(self, destination: str) -> bool:
        return os.path.exists(os.path.join(destination, ".git"))

    def checkout(
        self,
        repository: str,
        reference: str,
        destination: str,
        user: str | None = None,
        timeout: float | None = None,
    ) -> None:
        if os.path.isdir(destination) and os.listdir(destination):
            # Existing non-empty directory: initialise in place and fetch
            steps = [
                ["git", "init", "--quiet"],
                ["git", "remote", "add", "origin", repository],
                ["git", "fetch", "--quiet", "origin", reference],
                ["git", "checkout", "--quiet", "-f", "FETCH_HEAD"],
            ]
            for argv in steps:
                self._runner.run(argv, user=user, cwd=destination, timeout=timeout).check(
                    self.name, destination,
                )
        else:
            self._runner.run(
                ["git", "clone", "--quiet", "--branch", reference, repository, destination],
                user=user,
                timeout=timeout,
            ).check(self.name, destination)
        logger.info("Checked out %s@%s into %s", repository, reference, destination)
