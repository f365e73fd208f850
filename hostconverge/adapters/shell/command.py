"""
Command runner — execute typed commands and capture their output.

The SINGLE PLACE where ``subprocess.run`` is called. Every other
collaborator that needs a process (package managers, init systems,
database clients, git) goes through a CommandRunner so that timeouts,
user switching, and logging behave the same everywhere.

Commands are argv lists. There is no shell, no string interpolation,
and no implicit sudo: running as another user requires that this
process is already allowed to switch to it.
"""

from __future__ import annotations

import logging
import os
import pwd
import shutil
import subprocess
import time
from collections.abc import Mapping, Sequence

from hostconverge.adapters.base import CommandResult, CommandRunner
from hostconverge.core.errors import ActionTimeoutError, ExecutionError

logger = logging.getLogger(__name__)

# Output kept per stream; long installs produce megabytes of noise.
_OUTPUT_TAIL = 4000


def _login_env(entry: pwd.struct_passwd) -> dict[str, str]:
    """Environment a login shell would give this user."""
    return {
        "HOME": entry.pw_dir,
        "USER": entry.pw_name,
        "LOGNAME": entry.pw_name,
        "SHELL": entry.pw_shell or "/bin/sh",
    }


class SubprocessCommandRunner(CommandRunner):
    """Run commands with ``subprocess.run``.

    When ``user`` differs from the current user the child switches uid,
    gid and supplementary groups before exec, and gets that user's HOME,
    USER, LOGNAME and SHELL (the environment ``su -l`` would provide).
    """

    @property
    def name(self) -> str:
        return "command"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def run(
        self,
        argv: Sequence[str],
        *,
        user: str | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        stdin: str | None = None,
    ) -> CommandResult:
        argv = tuple(str(a) for a in argv)
        if not argv:
            raise ExecutionError(self.name, "<empty>", "empty command")
        program = argv[0]

        run_env = os.environ.copy()
        switch: dict = {}
        if user is not None:
            try:
                entry = pwd.getpwnam(user)
            except KeyError:
                raise ExecutionError(self.name, program, f"unknown user {user!r}") from None
            if entry.pw_uid != os.geteuid():
                switch = {
                    "user": entry.pw_uid,
                    "group": entry.pw_gid,
                    "extra_groups": os.getgrouplist(entry.pw_name, entry.pw_gid),
                }
            run_env.update(_login_env(entry))
        if env:
            run_env.update(env)

        logger.debug(
            "Executing: %s (cwd=%s, user=%s, timeout=%s)",
            " ".join(argv), cwd, user or "<current>", timeout,
        )
        start = time.monotonic()
        try:
            result = subprocess.run(
                argv,
                cwd=cwd,
                env=run_env,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=timeout,
                **switch,
            )
        except subprocess.TimeoutExpired:
            # subprocess.run kills and reaps the child before re-raising
            raise ActionTimeoutError(
                self.name, program, f"timed out after {timeout}s: {' '.join(argv)}",
            ) from None
        except FileNotFoundError as e:
            raise ExecutionError(self.name, program, f"cannot execute: {e}") from None
        except PermissionError as e:
            raise ExecutionError(
                self.name, program, f"permission denied (user={user or 'current'}): {e}",
            ) from None
        except OSError as e:
            raise ExecutionError(self.name, program, f"command execution error: {e}") from None

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug("%s exited %d in %dms", program, result.returncode, elapsed_ms)

        return CommandResult(
            argv=argv,
            exit_code=result.returncode,
            stdout=(result.stdout or "")[-_OUTPUT_TAIL:],
            stderr=(result.stderr or "")[-_OUTPUT_TAIL:],
            elapsed_ms=elapsed_ms,
        )
