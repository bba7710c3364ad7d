"""Run external collaborators (site build, optimizers, linters) as
pass/fail subprocess steps.

Commands are argument vectors executed without a shell.
"""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from edgedeploy.core.cancellation import CancelToken
from edgedeploy.core.errors import BuildError

logger = logging.getLogger(__name__)

_TAIL_CHARS = 2000


@dataclass(frozen=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int
    duration_ms: int
    output_tail: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _tail(text: str | None) -> str:
    return (text or "")[-_TAIL_CHARS:]


def run_command(
    argv: list[str],
    *,
    cwd: Path,
    timeout: float | None = None,
    cancel: CancelToken | None = None,
) -> CommandResult:
    """Run *argv* in *cwd*; raise ``BuildError`` unless it exits 0.

    The effective timeout is the smaller of *timeout* and whatever is left
    on *cancel*'s deadline.
    """
    if not argv:
        raise BuildError("Empty command")
    if cancel is not None:
        cancel.raise_if_cancelled()
        left = cancel.remaining()
        if left is not None:
            timeout = left if timeout is None else min(timeout, left)

    command = " ".join(argv)
    logger.info("Running: %s", command)
    started = time.monotonic()
    try:
        proc = subprocess.run(
            argv,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        raise BuildError(f"{command} timed out after {timeout:.0f}s") from exc
    except OSError as exc:
        raise BuildError(f"{command} could not be started: {exc}") from exc

    result = CommandResult(
        argv=tuple(argv),
        returncode=proc.returncode,
        duration_ms=int((time.monotonic() - started) * 1000),
        output_tail=_tail(proc.stdout) + _tail(proc.stderr),
    )
    if not result.ok:
        logger.error("%s exited %d", command, proc.returncode)
        raise BuildError(
            f"{command} exited {proc.returncode}: {_tail(proc.stderr) or _tail(proc.stdout)}"
        )
    logger.debug("%s finished in %d ms", command, result.duration_ms)
    return result
