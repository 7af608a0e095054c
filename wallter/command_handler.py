"""
Command Handler

Runs the user's custom pre/post commands around each wallpaper change. Commands are shell command
lines taken verbatim from the config, e.g. "notify-send 'new wallpaper'" or "wal -i $WALLTER_WALLPAPER".

The child process inherits the environment plus WALLTER_PHASE ("pre" or "post") and anything the
caller adds (the scheduler adds WALLTER_MONITOR and WALLTER_WALLPAPER).
"""

import os
import logging
import subprocess
from enum import Enum
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


class CommandTimeout(Exception):
    """Raised when a custom command runs longer than its timeout. The command is killed."""

    pass


class Phase(str, Enum):
    PRE = "pre"
    POST = "post"


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    output: str


def run_command(
    command_line: str, phase: Phase, env: Optional[dict] = None, timeout: float = 30.0
) -> CommandResult:
    """Run command_line through the shell and capture combined stdout and stderr."""

    child_env = dict(os.environ)
    child_env.update(env or {})
    child_env["WALLTER_PHASE"] = Phase(phase).value

    logger.debug("Running %s command: %s", Phase(phase).value, command_line)

    try:
        process = subprocess.run(
            command_line,
            shell=True,
            env=child_env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
        )

    except subprocess.TimeoutExpired:
        raise CommandTimeout(f"'{command_line}' did not finish within {timeout}s")

    return CommandResult(exit_code=process.returncode, output=process.stdout or "")
