from __future__ import annotations

import gzip
import json
import logging
import math
from pathlib import Path
from typing import Any, TextIO, Tuple

import numpy as np

from .models import PhasingDataError

logger = logging.getLogger(__name__)

_LN10 = math.log(10.0)

# Highest printable byte allowed in a PHRED+33 quality string.
MAX_QUALITY_BYTE = 126
PHRED_OFFSET = 33


class DegenerateProbabilityError(PhasingDataError):
    """A log-probability is positive (p > 1) or not finite."""


def validate_log_prob(x: float, *, what: str = "log-probability") -> float:
    v = float(x)
    if math.isnan(v) or math.isinf(v):
        raise DegenerateProbabilityError(f"{what} must be finite, got {v!r}")
    if v > 0.0:
        raise DegenerateProbabilityError(f"{what} must be <= 0 (probability <= 1), got {v!r}")
    return v


def log_prob(p: float) -> float:
    """Natural log of a probability in (0, 1]."""
    if not 0.0 < p <= 1.0:
        raise ValueError(f"probability must be in (0, 1], got {p!r}")
    return math.log(p)


def log_sum_exp(a: float, b: float) -> float:
    """log(exp(a) + exp(b)) without exponentiating large negative values."""
    return float(np.logaddexp(a, b))


def normalize_log_pair(a: float, b: float) -> Tuple[float, float]:
    """Normalize two log-evidence values so exp(a) + exp(b) == 1."""
    a = validate_log_prob(a, what="haplotype 0 log-evidence")
    b = validate_log_prob(b, what="haplotype 1 log-evidence")
    total = log_sum_exp(a, b)
    return a - total, b - total


def log_prob_one_minus(log_p: float) -> float:
    """log(1 - p) for p = exp(log_p)."""
    log_p = validate_log_prob(log_p)
    if log_p == 0.0:
        return -math.inf
    # log1p(-p) loses precision near p == 1; switch at log(1/2)
    if log_p < -math.log(2.0):
        return math.log1p(-math.exp(log_p))
    return math.log(-math.expm1(log_p))


def phred(log_p: float) -> float:
    """PHRED scale value -10*log10(p) of a natural-log probability."""
    log_p = validate_log_prob(log_p, what="call quality")
    return -10.0 * log_p / _LN10


def to_phred(log_p: float) -> int:
    return int(phred(log_p))


def phred_to_log_prob(q: float) -> float:
    # Guard against negative values (can occur if qualities are missing).
    if q <= 0:
        return 0.0
    return -q * _LN10 / 10.0


def quality_byte(log_p: float) -> int:
    """PHRED+33 byte for a call quality, capped at ``MAX_QUALITY_BYTE``.

    A quality of ``-inf`` (miscall probability 0) saturates to the cap.
    """
    if log_p == -math.inf:
        return MAX_QUALITY_BYTE
    q = phred(log_p) + PHRED_OFFSET
    if q > MAX_QUALITY_BYTE:
        return MAX_QUALITY_BYTE
    return int(q)


def hap_threshold_from_qual(hap_assignment_qual: float) -> float:
    """Log-probability threshold log(1 - 10^(-q/10)) for a PHRED assignment quality."""
    if hap_assignment_qual <= 0:
        raise ValueError("hap_assignment_qual must be > 0")
    return log_prob_one_minus(phred_to_log_prob(hap_assignment_qual))


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)
