"""
Process invoker — run cargo subcommands and capture their stdout.

The child never sees our stdin, its stderr goes straight to the terminal
so build progress stays visible, and stdout is read to EOF before the exit
status is collected (``subprocess.run`` drives ``communicate``), so a
chatty child cannot stall on a full pipe.
"""
from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple

from cargo_near.errors import BuildProcessFailed, BuildProcessUnavailable

logger = logging.getLogger(__name__)

# (key, value) sets the variable, (key, None) removes it
EnvOverride = Tuple[str, Optional[str]]


@dataclass(frozen=True)
class BuildInvocation:
    """One cargo call: ``cargo <subcommand> <args...>``."""

    subcommand: str
    args: Tuple[str, ...] = ()
    working_dir: Optional[Path] = None
    env: Tuple[EnvOverride, ...] = field(default_factory=tuple)

    def command_line(self, cargo: str) -> list[str]:
        return [cargo, self.subcommand, *self.args]

    def child_env(self, base: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Apply the overrides, in order, on top of *base* (default: os.environ)."""
        env = dict(os.environ if base is None else base)
        for key, value in self.env:
            if value is None:
                env.pop(key, None)
            else:
                env[key] = value
        return env


class ProcessInvoker:
    """Runs :class:`BuildInvocation` values against one cargo binary."""

    def __init__(self, cargo: str = "cargo"):
        self.cargo = cargo

    def describe(self, invocation: BuildInvocation) -> str:
        return shlex.join(invocation.command_line(self.cargo))

    def invoke(self, invocation: BuildInvocation) -> bytes:
        """
        Run *invocation* to completion and return its stdout bytes.

        Raises
        ------
        BuildProcessUnavailable
            If the binary cannot be spawned.
        BuildProcessFailed
            If the process exits with a non-zero status.
        """
        cmd = invocation.command_line(self.cargo)
        described = self.describe(invocation)

        if invocation.working_dir is not None:
            logger.debug("Setting cargo working dir to '%s'", invocation.working_dir)
        for key, value in invocation.env:
            if value is None:
                logger.debug("Unsetting %s for child", key)
            else:
                logger.debug("Setting %s=%s for child", key, value)
        logger.info("Invoking cargo: %s", described)

        try:
            result = subprocess.run(
                cmd,
                cwd=str(invocation.working_dir) if invocation.working_dir else None,
                env=invocation.child_env(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
            )
        except OSError as e:
            raise BuildProcessUnavailable(described, e) from e

        if result.returncode != 0:
            raise BuildProcessFailed(described, result.returncode)

        return result.stdout

    def invoke_cargo(
        self,
        subcommand: str,
        args: Sequence[str] = (),
        working_dir: Optional[Path] = None,
        env: Iterable[EnvOverride] = (),
    ) -> bytes:
        """Convenience wrapper building the :class:`BuildInvocation` inline."""
        return self.invoke(
            BuildInvocation(
                subcommand=subcommand,
                args=tuple(args),
                working_dir=working_dir,
                env=tuple(env),
            )
        )
