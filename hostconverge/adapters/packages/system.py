"""
System package managers — apt, dnf, yum, zypper, apk, pacman, brew.

Installed-checks use the distro's query tool (dpkg-query, rpm, apk,
pacman, brew); installs run the manager non-interactively. Everything
goes through the CommandRunner. No sudo is added: the run needs to
have the privileges the package database requires.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable

from hostconverge.adapters.base import CommandRunner, PackageManager
from hostconverge.core.errors import ExecutionError

logger = logging.getLogger(__name__)


def _parse_dpkg(stdout: str) -> str | None:
    status, _, version = stdout.partition("\t")
    if "install ok installed" not in status:
        return None
    return version.strip()


def _parse_first_line(stdout: str) -> str | None:
    line = stdout.strip().splitlines()[0] if stdout.strip() else ""
    return line or None


def _parse_name_version(stdout: str) -> str | None:
    # "pkg 1.2.3-1" (pacman -Q, brew list --versions)
    parts = stdout.strip().split()
    return parts[1] if len(parts) >= 2 else None


def _parse_apk(stdout: str) -> str | None:
    # "pkg-1.2.3-r0 description" from apk info -e -v; presence is what matters
    return "" if stdout.strip() else None


_QUERIES: dict[str, tuple[Callable[[str], list[str]], Callable[[str], str | None]]] = {
    "apt": (lambda p: ["dpkg-query", "-W", "-f=${Status}\t${Version}", p], _parse_dpkg),
    "dnf": (lambda p: ["rpm", "-q", "--qf", "%{VERSION}-%{RELEASE}", p], _parse_first_line),
    "yum": (lambda p: ["rpm", "-q", "--qf", "%{VERSION}-%{RELEASE}", p], _parse_first_line),
    "zypper": (lambda p: ["rpm", "-q", "--qf", "%{VERSION}-%{RELEASE}", p], _parse_first_line),
    "apk": (lambda p: ["apk", "info", "-e", p], _parse_apk),
    "pacman": (lambda p: ["pacman", "-Q", p], _parse_name_version),
    "brew": (lambda p: ["brew", "list", "--versions", p], _parse_name_version),
}

_INSTALL_BINARIES = {
    "apt": "apt-get",
    "dnf": "dnf",
    "yum": "yum",
    "zypper": "zypper",
    "apk": "apk",
    "pacman": "pacman",
    "brew": "brew",
}

SUPPORTED_MANAGERS = tuple(_QUERIES)


def version_matches(installed: str, wanted: str | None) -> bool:
    """Exact match, or ``wanted`` is a prefix up to a separator (``1.2`` ⊂ ``1.2.3-1``)."""
    if wanted is None:
        return True
    if installed == wanted:
        return True
    return installed.startswith(wanted) and installed[len(wanted)] in ".-+~:"


def build_install_command(package: str, version: str | None, manager: str) -> list[str]:
    """Build the non-interactive install argv for one package."""
    if manager == "apt":
        return ["apt-get", "install", "-y", "-q", f"{package}={version}" if version else package]
    if manager in ("dnf", "yum"):
        return [manager, "install", "-y", f"{package}-{version}" if version else package]
    if manager == "zypper":
        return ["zypper", "--non-interactive", "install", f"{package}={version}" if version else package]
    if manager == "apk":
        return ["apk", "add", "--no-cache", f"{package}={version}" if version else package]
    if manager == "pacman":
        if version:
            raise ValueError("pacman cannot install a pinned version")
        return ["pacman", "-S", "--noconfirm", "--needed", package]
    if manager == "brew":
        return ["brew", "install", f"{package}@{version}" if version else package]
    raise ValueError(f"unsupported package manager: {manager}")


class SystemPackageManager(PackageManager):
    """One distro package manager, queried and driven through a CommandRunner."""

    def __init__(self, manager: str, runner: CommandRunner):
        if manager not in _QUERIES:
            raise ValueError(
                f"Unknown package manager '{manager}'. Valid: {', '.join(SUPPORTED_MANAGERS)}"
            )
        self._manager = manager
        self._runner = runner

    @property
    def name(self) -> str:
        return self._manager

    def is_available(self) -> bool:
        return shutil.which(_INSTALL_BINARIES[self._manager]) is not None

    def installed_version(self, package: str) -> str | None:
        """Installed version, ``""`` if installed but unversioned, None if absent."""
        build, parse = _QUERIES[self._manager]
        try:
            result = self._runner.run(build(package), timeout=60)
        except ExecutionError as e:
            # Checker binary not on PATH (e.g. dpkg-query on Fedora)
            logger.warning("Package check for %s with %s failed: %s", package, self._manager, e)
            return None
        if not result.ok:
            return None
        return parse(result.stdout)

    def is_installed(self, package: str, version: str | None = None) -> bool:
        installed = self.installed_version(package)
        if installed is None:
            return False
        if version and installed == "":
            # Manager cannot report versions; presence is the best we know
            return True
        return version_matches(installed, version)

    def install(
        self, package: str, version: str | None = None, timeout: float | None = None,
    ) -> str:
        try:
            argv = build_install_command(package, version, self._manager)
        except ValueError as e:
            raise ExecutionError(self.name, package, str(e)) from None

        env = {"DEBIAN_FRONTEND": "noninteractive"} if self._manager == "apt" else None
        self._runner.run(argv, env=env, timeout=timeout).check(self.name, package)
        label = f"{package}={version}" if version else package
        logger.info("Installed %s via %s", label, self._manager)
        return f"installed {label} via {self._manager}"
