"""Environment self-checks.

This module powers the ``readphase doctor`` CLI command. Classification,
encoding and MEC evaluation are pure Python; only ``readphase phase`` needs a
phasing solver, either the HapCUT2 executable or a shared library exposing
the solver entry point.
"""

from __future__ import annotations

import ctypes
import logging
import platform
import shutil
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

_HAPCUT2_HOWTO = (
    "Conda/mamba: mamba install -c bioconda hapcut2\n"
    "From source: https://github.com/vibansal/HapCUT2 (make; then add build/ to PATH)"
)


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str
    howto: Optional[str] = None


def check_python() -> CheckResult:
    v = platform.python_version()
    return CheckResult(name="python", ok=True, detail=f"Python {v}")


def check_executable(name: str, *, howto: Optional[str] = None) -> CheckResult:
    p = shutil.which(name)
    if p is None:
        return CheckResult(name=name, ok=False, detail="not found in PATH", howto=howto)
    return CheckResult(name=name, ok=True, detail=p)


def check_solver_library(path: str, *, symbol: str = "hapcut2") -> CheckResult:
    """Check that a shared library loads and exports the solver entry point."""
    try:
        lib = ctypes.CDLL(path)
    except OSError as e:
        return CheckResult(name="solver-lib", ok=False, detail=f"cannot load {path}: {e}")
    if not hasattr(lib, symbol):
        return CheckResult(
            name="solver-lib",
            ok=False,
            detail=f"{path} does not export '{symbol}'",
            howto="Build the solver as a shared library exporting the expected entry point.",
        )
    return CheckResult(name="solver-lib", ok=True, detail=f"{path} ({symbol})")


def collect_checks(*, solver_exe: str = "HAPCUT2", solver_lib: Optional[str] = None) -> Dict[str, CheckResult]:
    """Run all checks and return a mapping name->result."""
    checks: Dict[str, CheckResult] = {}

    checks["python"] = check_python()
    checks["solver-exe"] = check_executable(solver_exe, howto=_HAPCUT2_HOWTO)
    if solver_lib is not None:
        checks["solver-lib"] = check_solver_library(solver_lib)

    return checks
