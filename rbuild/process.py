# rbuild/process.py
# -*- coding: utf-8 -*-
"""
process.py - external command execution for build steps

The working directory and the environment are explicit arguments of every
call. The calling process never chdir()s and never touches os.environ, so two
variant builds running side by side cannot see each other's directory or
environment.

API:
  res = run_command(["./configure", "--prefix=/opt/x"], cwd="/src/libogg",
                    env_overrides={"CFLAGS": "-O2"}, timeout=600)
  res.returncode, res.output, res.timed_out
"""

from __future__ import annotations

import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence, Union

from rbuild.logging import get_logger

logger = get_logger("process")

TIMEOUT_RC = 124
NOT_FOUND_RC = 127

PathLike = Union[str, Path]


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    output: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 20) -> str:
        return "\n".join(self.output.splitlines()[-lines:])


# signature of anything that can stand in for run_command (tests, dry runs)
CommandRunner = Callable[..., CommandResult]


def build_env(env_overrides: Optional[Mapping[str, str]] = None, base: Optional[Mapping[str, str]] = None) -> dict:
    """Return a fresh environment: `base` (default os.environ) augmented by the overrides."""
    env = dict(os.environ if base is None else base)
    for k, v in (env_overrides or {}).items():
        env[str(k)] = str(v)
    return env


def run_command(
    argv: Sequence[str],
    *,
    cwd: PathLike,
    env_overrides: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    log_path: Optional[PathLike] = None,
) -> CommandResult:
    """Run argv in cwd and wait for it. stdout and stderr are merged and captured."""
    cmd = [str(a) for a in argv]
    logger.debug("RUN: %s (cwd=%s)", " ".join(cmd), cwd)
    env = build_env(env_overrides)
    try:
        p = subprocess.Popen(
            cmd,
            cwd=str(cwd),
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except OSError as e:
        logger.error("cannot execute %s: %s", cmd[0], e)
        result = CommandResult(returncode=NOT_FOUND_RC, output=str(e))
        _append_log(log_path, cmd, result)
        return result

    try:
        out, _ = p.communicate(timeout=timeout)
        result = CommandResult(returncode=p.returncode, output=out or "")
    except subprocess.TimeoutExpired:
        _kill_group(p)
        out, _ = p.communicate()
        logger.error("timeout after %ss: %s", timeout, " ".join(cmd))
        result = CommandResult(returncode=TIMEOUT_RC, output=out or "", timed_out=True)

    for line in result.output.splitlines():
        logger.debug("| %s", line)
    _append_log(log_path, cmd, result)
    return result


def _append_log(log_path: Optional[PathLike], cmd: Sequence[str], result: CommandResult) -> None:
    if not log_path:
        return
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(f"$ {' '.join(cmd)}\n")
        fh.write(result.output)
        if result.output and not result.output.endswith("\n"):
            fh.write("\n")
        fh.write(f"# exit {result.returncode}{' (timeout)' if result.timed_out else ''}\n")


def _kill_group(p: subprocess.Popen) -> None:
    # the child and everything it spawned (compilers, configure tests)
    try:
        os.killpg(p.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        p.kill()
