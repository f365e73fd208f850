"""
pip — Python packages installed into a given interpreter.
"""

from __future__ import annotations

import logging
import shutil

from hostconverge.adapters.base import CommandRunner, PackageManager
from hostconverge.adapters.packages.system import version_matches
from hostconverge.core.errors import ExecutionError

logger = logging.getLogger(__name__)


class PipPackageManager(PackageManager):
    """``python -m pip`` for the interpreter named by ``python``."""

    def __init__(self, runner: CommandRunner, python: str = "python3"):
        self._runner = runner
        self._python = python

    @property
    def name(self) -> str:
        return "pip"

    def is_available(self) -> bool:
        return shutil.which(self._python) is not None

    def is_installed(self, package: str, version: str | None = None) -> bool:
        try:
            result = self._runner.run(
                [self._python, "-m", "pip", "show", package], timeout=60,
            )
        except ExecutionError as e:
            logger.warning("pip check for %s failed: %s", package, e)
            return False
        if not result.ok:
            return False
        for line in result.stdout.splitlines():
            if line.startswith("Version:"):
                return version_matches(line.split(":", 1)[1].strip(), version)
        return version is None

    def install(
        self, package: str, version: str | None = None, timeout: float | None = None,
    ) -> str:
        requirement = f"{package}=={version}" if version else package
        self._runner.run(
            [self._python, "-m", "pip", "install", "--disable-pip-version-check", requirement],
            timeout=timeout,
        ).check(self.name, package)
        logger.info("Installed %s via pip", requirement)
        return f"installed {requirement} via pip"
