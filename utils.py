# utils.py

import hmac
import logging
import subprocess
import time
from typing import Mapping, Optional, Sequence, Tuple

from errors import InvocationTimeout

logger = logging.getLogger(__name__)


class CommandError(Exception):
    def __init__(self, command: Sequence[str], returncode: int, stdout: str, stderr: str):
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"Command failed (exit {returncode}): {' '.join(self.command)}\nError: {stderr}")


def run_command(
        command: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
) -> Tuple[str, str]:
    """
    Run `command` without a shell and return its stripped (stdout, stderr).

    Raises CommandError on a non-zero exit. subprocess.TimeoutExpired and OSError
    (e.g. the binary is missing) propagate to the caller, which knows which step failed.
    """
    logger.debug(f"Executing command: {' '.join(command)} in {cwd}")
    try:
        result = subprocess.run(
            list(command),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as e:
        stdout = (e.stdout or "").strip()
        stderr = (e.stderr or "").strip()
        logger.debug(f"Command exited with {e.returncode}: {' '.join(command)}\n{stderr}")
        raise CommandError(command, e.returncode, stdout, stderr) from e

    stdout_decoded = result.stdout.strip()
    stderr_decoded = result.stderr.strip()
    if stdout_decoded:
        logger.debug(f"Command stdout: {stdout_decoded}")
    if stderr_decoded:
        logger.debug(f"Command stderr: {stderr_decoded}")
    return stdout_decoded, stderr_decoded


class Deadline:
    """Wall-clock budget shared by every external call of one invocation."""

    def __init__(self, seconds: float, clock=time.monotonic):
        self._clock = clock
        self.budget = seconds
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, step: str):
        if self.expired():
            raise InvocationTimeout(f"Invocation budget of {self.budget:.1f}s exhausted before {step}")


def deadline_for_context(context, timeout_seconds: float, margin_seconds: float = 0) -> Deadline:
    """
    Build the invocation deadline. Under Lambda the context's remaining time wins,
    minus a margin so cleanup can still run before the platform kills us.
    """
    remaining_ms = getattr(context, "get_remaining_time_in_millis", None)
    if callable(remaining_ms):
        seconds = remaining_ms() / 1000.0 - margin_seconds
        return Deadline(max(seconds, 1.0))
    return Deadline(timeout_seconds)


def api_key_matches(provided: Optional[str], expected: str) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())
