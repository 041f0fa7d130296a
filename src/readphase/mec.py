"""Minimum Error Correction (MEC) statistics for a computed phasing.

Each fragment is charged the mismatches against whichever haplotype copy it
fits best. Ties go to haplotype 0.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from .models import Fragment, PhasingDataError, VarList, check_variant_index
from .utils import log_prob, open_textmaybe_gzip

logger = logging.getLogger(__name__)


class ZeroDenominatorError(PhasingDataError):
    """A phased variant or block has no allele observations to normalize by."""


def fragment_mismatches(
    fragment: Fragment, varlist: VarList, ln_max_p_miscall: float
) -> Tuple[List[int], List[int]]:
    """Variant indices where confident calls disagree with haplotype 0 and haplotype 1."""
    mismatched: Tuple[List[int], List[int]] = ([], [])
    for call in fragment.calls:
        var = varlist.get(call.variant_index)
        if call.quality >= ln_max_p_miscall or var.phase_set is None:
            continue
        for hap_ix in (0, 1):
            if call.allele != var.genotype[hap_ix]:
                mismatched[hap_ix].append(call.variant_index)
    return mismatched


def _min_error_hap(mismatched: Tuple[List[int], List[int]]) -> int:
    return 0 if len(mismatched[0]) <= len(mismatched[1]) else 1


def fragment_mec(
    fragments: Iterable[Fragment], varlist: VarList, max_p_miscall: float
) -> List[int]:
    """Best-haplotype error count for every fragment, in input order."""
    ln_max = log_prob(max_p_miscall)
    out: List[int] = []
    for frag in fragments:
        mismatched = fragment_mismatches(frag, varlist, ln_max)
        out.append(len(mismatched[_min_error_hap(mismatched)]))
    return out


def calculate_mec(fragments: Iterable[Fragment], varlist: VarList, max_p_miscall: float) -> None:
    """Recompute ``mec``, ``mec_frac_variant`` and ``mec_frac_block`` on every variant.

    Statistics are computed into a fresh table and only written back once all
    denominators have been checked, so a ``ZeroDenominatorError`` leaves the
    variant table untouched. Unphased variants end with zeroed statistics.
    """
    ln_max = log_prob(max_p_miscall)
    n = len(varlist)

    mec = np.zeros(n, dtype=np.int64)
    for frag in fragments:
        mismatched = fragment_mismatches(frag, varlist, ln_max)
        for ix in mismatched[_min_error_hap(mismatched)]:
            mec[ix] += 1

    totals = np.array([v.total_alleles for v in varlist], dtype=np.int64)
    block_mec: Dict[int, int] = {}
    block_total: Dict[int, int] = {}
    for i, var in enumerate(varlist):
        if var.phase_set is None:
            continue
        if totals[i] <= 0:
            raise ZeroDenominatorError(
                f"Phased variant {i} (phase set {var.phase_set}) has no allele observations"
            )
        block_mec[var.phase_set] = block_mec.get(var.phase_set, 0) + int(mec[i])
        block_total[var.phase_set] = block_total.get(var.phase_set, 0) + int(totals[i])

    for var in varlist:
        var.mec = 0
        var.mec_frac_variant = 0.0
        var.mec_frac_block = 0.0

    for i, var in enumerate(varlist):
        ps = var.phase_set
        if ps is None:
            continue
        var.mec = int(mec[i])
        var.mec_frac_variant = var.mec / int(totals[i])
        var.mec_frac_block = block_mec[ps] / block_total[ps]

    logger.info(
        "MEC: %d errors over %d phased variants in %d blocks",
        sum(block_mec.values()),
        sum(1 for _ in varlist.phased()),
        len(block_mec),
    )


def count_alleles(
    fragments: Iterable[Fragment],
    n_variants: int,
    max_p_miscall: Optional[float] = None,
    n_alleles: int = 2,
) -> List[Tuple[int, ...]]:
    """Tally calls per allele at every variant.

    With ``max_p_miscall`` set only confident calls are counted.
    """
    ln_max = log_prob(max_p_miscall) if max_p_miscall is not None else None
    counts = np.zeros((n_variants, n_alleles), dtype=np.int64)
    for frag in fragments:
        for call in frag.calls:
            check_variant_index(call.variant_index, n_variants)
            if ln_max is not None and call.quality >= ln_max:
                continue
            if not 0 <= call.allele < n_alleles:
                raise PhasingDataError(
                    f"Fragment {frag.id!r} has allele {call.allele} at variant {call.variant_index}"
                )
            counts[call.variant_index, call.allele] += 1
    return [tuple(int(c) for c in row) for row in counts]


def summarize_mec(varlist: VarList) -> Dict[str, object]:
    """Per-block and overall MEC summary of an evaluated variant table."""
    blocks: Dict[int, Dict[str, object]] = {}
    for var in varlist.phased():
        row = blocks.setdefault(
            var.phase_set,
            {"phase_set": var.phase_set, "n_variants": 0, "mec": 0, "total": 0, "mec_frac": 0.0},
        )
        row["n_variants"] += 1
        row["mec"] += var.mec
        row["total"] += var.total_alleles
        row["mec_frac"] = var.mec_frac_block

    mec_total = sum(int(b["mec"]) for b in blocks.values())
    obs_total = sum(int(b["total"]) for b in blocks.values())
    n_phased = sum(int(b["n_variants"]) for b in blocks.values())
    return {
        "n_variants": len(varlist),
        "n_phased": n_phased,
        "n_unphased": len(varlist) - n_phased,
        "n_blocks": len(blocks),
        "mec_total": mec_total,
        "observations_total": obs_total,
        "mec_frac": (mec_total / obs_total) if obs_total > 0 else 0.0,
        "blocks": list(blocks.values()),
    }


def write_variant_table(varlist: VarList, path: str | Path) -> Path:
    path = Path(path)
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write(
            "\t".join(
                [
                    "index",
                    "chrom",
                    "pos0",
                    "genotype",
                    "phase_set",
                    "allele_counts",
                    "mec",
                    "mec_frac_variant",
                    "mec_frac_block",
                ]
            )
            + "\n"
        )
        for v in varlist:
            ps = "." if v.phase_set is None else str(v.phase_set)
            sep = "|" if v.phase_set is not None else "/"
            fh.write(
                f"{v.index}\t{v.chrom}\t{v.pos0}\t{v.genotype[0]}{sep}{v.genotype[1]}\t{ps}\t"
                f"{','.join(str(c) for c in v.allele_counts)}\t{v.mec}\t"
                f"{v.mec_frac_variant:.6f}\t{v.mec_frac_block:.6f}\n"
            )
    return path

