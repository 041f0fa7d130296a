"""Running the HapCUT2 executable: PATH lookup and checked subprocess calls."""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


class ExternalCommandError(RuntimeError):
    """Raised when an external command exits non-zero."""

    def __init__(self, message: str, *, cmd: Sequence[str], returncode: int, stderr: str = "") -> None:
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = int(returncode)
        self.stderr = stderr


def cmd_to_str(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(x)) for x in cmd)


def ensure_executable_in_path(exe: str, *, hint: Optional[str] = None) -> str:
    """Return the resolved path of ``exe`` or raise FileNotFoundError with ``hint``."""
    path = shutil.which(exe)
    if path is None:
        msg = f"Required executable '{exe}' was not found in your PATH."
        if hint:
            msg += "\n\n" + hint
        raise FileNotFoundError(msg)
    return path


def run_command(cmd: Sequence[str]) -> subprocess.CompletedProcess:
    """Run ``cmd`` with captured text output; raise ``ExternalCommandError`` on failure."""
    logger.debug("Running command: %s", cmd_to_str(cmd))
    cp = subprocess.run([str(x) for x in cmd], capture_output=True, text=True, check=False)
    if cp.returncode != 0:
        raise ExternalCommandError(
            f"External command failed (exit code {cp.returncode}).\n"
            f"Command:\n  {cmd_to_str(cmd)}\n"
            f"STDERR (tail):\n  {_tail(cp.stderr)}",
            cmd=cmd,
            returncode=cp.returncode,
            stderr=cp.stderr,
        )
    return cp


def _tail(s: str, n: int = 3000) -> str:
    if not s:
        return "(empty)"
    if len(s) <= n:
        return s
    return "..." + s[-n:]
