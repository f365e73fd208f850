"""
Init-system service manager — systemd, OpenRC, SysV.

The init system is detected once per instance:

    /run/systemd/system exists  → systemd   (systemctl)
    rc-service on PATH          → openrc    (rc-service)
    /etc/init.d exists          → sysv      (service)
"""

from __future__ import annotations

import logging
import os
import shutil

from hostconverge.adapters.base import CommandRunner, ServiceManager
from hostconverge.core.errors import ExecutionError

logger = logging.getLogger(__name__)

_ACTIONS = {"started": "start", "stopped": "stop"}


def detect_init_system() -> str:
    """Return 'systemd', 'openrc', 'sysv', or 'unknown'."""
    if os.path.isdir("/run/systemd/system"):
        return "systemd"
    if shutil.which("rc-service"):
        return "openrc"
    if os.path.isdir("/etc/init.d"):
        return "sysv"
    return "unknown"


def _state_command(init_system: str, service: str, state: str) -> list[str]:
    action = _ACTIONS[state]
    if init_system == "systemd":
        return ["systemctl", action, service]
    if init_system == "openrc":
        return ["rc-service", service, action]
    return ["service", service, action]


def _status_command(init_system: str, service: str) -> list[str]:
    if init_system == "systemd":
        return ["systemctl", "is-active", "--quiet", service]
    if init_system == "openrc":
        return ["rc-service", service, "status"]
    return ["service", service, "status"]


class InitServiceManager(ServiceManager):
    """Start and stop services through whatever init system the host runs."""

    def __init__(self, runner: CommandRunner, init_system: str | None = None):
        self._runner = runner
        self._init_system = init_system

    @property
    def name(self) -> str:
        return "service"

    @property
    def init_system(self) -> str:
        if self._init_system is None:
            self._init_system = detect_init_system()
            logger.debug("Detected init system: %s", self._init_system)
        return self._init_system

    def is_available(self) -> bool:
        return self.init_system != "unknown"

    def _is_running(self, service: str) -> bool:
        # Exit 0 means running for systemctl is-active and for LSB status
        result = self._runner.run(_status_command(self.init_system, service), timeout=30)
        return result.ok

    def is_in_state(self, service: str, state: str) -> bool:
        if state not in _ACTIONS:
            raise ValueError(f"unknown service state: {state}")
        running = self._is_running(service)
        return running if state == "started" else not running

    def set_state(self, service: str, state: str, timeout: float | None = None) -> None:
        if state not in _ACTIONS:
            raise ExecutionError(self.name, service, f"unknown service state: {state}")
        if self.init_system == "unknown":
            raise ExecutionError(self.name, service, "no supported init system detected")
        argv = _state_command(self.init_system, service, state)
        self._runner.run(argv, timeout=timeout).check(self.name, service)
        logger.info("Service %s %s (%s)", service, state, self.init_system)
