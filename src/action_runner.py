"""Runs the start/stop commands of a device, one after the other."""

from __future__ import annotations

import itertools
import logging
import os
import re
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

_ENV_ASSIGNMENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*=.*", re.DOTALL)


@dataclass
class ActionResult:
    command: str
    launched: bool
    returncode: Optional[int] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.launched and not self.timed_out and self.returncode == 0


def resolve_executable(command: str) -> Optional[str]:
    """
    Find the program a command string would start.

    Leading ``NAME=value`` environment assignments are skipped and the next
    shell word is taken as the program. Paths must point to an executable
    file; bare names are looked up on ``PATH``. Shell builtins such as
    ``cd`` are not programs and do not resolve.

    Returns:
        The resolved path, or None if the command cannot be launched
    """
    try:
        words = shlex.split(command)
    except ValueError:
        return None

    words = list(itertools.dropwhile(_ENV_ASSIGNMENT.fullmatch, words))
    if not words:
        return None

    program = words[0]
    if "/" in program:
        path = os.path.expanduser(program)
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return path
        return None
    return shutil.which(program)


class ActionRunner:
    """Executes shell commands synchronously through ``<shell> -c``.

    Each call blocks until the child exits. ``timeout`` (seconds) bounds a
    single command; None waits forever.
    """

    def __init__(self, shell: str = "bash", timeout: Optional[float] = None) -> None:
        self.shell = shell
        self.timeout = timeout

    def run(self, command: str) -> ActionResult:
        if resolve_executable(command) is None:
            logger.warning("Unable to launch : %s", command)
            return ActionResult(command=command, launched=False)

        logger.info("Launching : %s", command)
        try:
            completed = subprocess.run(
                [self.shell, "-c", command],
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.error("Command timed out after %ss and was killed: %s", self.timeout, command)
            return ActionResult(command=command, launched=True, timed_out=True)
        except OSError as exc:
            logger.error("Failed to start %s: %s", command, exc)
            return ActionResult(command=command, launched=False)

        if completed.returncode != 0:
            logger.warning("Command exited with status %s: %s", completed.returncode, command)
        else:
            logger.debug("Command finished: %s", command)
        return ActionResult(command=command, launched=True, returncode=completed.returncode)

    def run_all(self, commands: Iterable[str]) -> list[ActionResult]:
        """Run *commands* in order; a failing command never stops the rest."""
        return [self.run(command) for command in commands]
