from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np
import pysam
from tqdm import tqdm

from .models import Fragment, HaplotypeAssignment
from .utils import DegenerateProbabilityError, normalize_log_pair, open_textmaybe_gzip

logger = logging.getLogger(__name__)

# Values written to the HP tag, following the 1-based haplotag convention.
_HP_TAG_VALUE = {"0": 1, "1": 2}


def _check_threshold(threshold: float) -> float:
    t = float(threshold)
    if math.isnan(t) or math.isinf(t) or t > 0.0:
        raise DegenerateProbabilityError(
            f"haplotype assignment threshold must be a finite log-probability <= 0, got {t!r}"
        )
    return t


def classify_fragment(fragment: Fragment, threshold: float) -> HaplotypeAssignment:
    """Assign one fragment to haplotype '0', '1' or 'U' (unassigned)."""
    t = _check_threshold(threshold)
    p0, p1 = normalize_log_pair(*fragment.p_read_hap)

    if p0 > t:
        cls = "0"
    elif p1 > t:
        cls = "1"
    else:
        cls = "U"

    return HaplotypeAssignment(
        fragment_id=fragment.id,
        n_calls=len(fragment.calls),
        p_hap0=p0,
        p_hap1=p1,
        cls=cls,
    )


def classify_fragments(fragments: Iterable[Fragment], threshold: float) -> List[HaplotypeAssignment]:
    return [classify_fragment(f, threshold) for f in fragments]


def separate_reads_by_haplotype(
    fragments: Iterable[Fragment], threshold: float
) -> Tuple[Set[str], Set[str]]:
    """Split fragment ids into (haplotype 0, haplotype 1) sets.

    Fragments whose normalized posterior exceeds ``threshold`` for neither
    haplotype are left out of both sets.
    """
    h0: Set[str] = set()
    h1: Set[str] = set()
    for res in classify_fragments(fragments, threshold):
        if res.cls == "0":
            h0.add(res.fragment_id)
        elif res.cls == "1":
            h1.add(res.fragment_id)
    logger.info("Separated reads by haplotype: hap0=%d hap1=%d", len(h0), len(h1))
    return h0, h1


def assignment_counts(assignments: Sequence[HaplotypeAssignment]) -> Dict[str, int]:
    counts = {"fragments_total": len(assignments), "class_0": 0, "class_1": 0, "class_U": 0}
    for a in assignments:
        counts[f"class_{a.cls}"] += 1
    return counts


def posterior_histogram(assignments: Sequence[HaplotypeAssignment], n_bins: int = 50) -> Dict[str, list]:
    """Histogram of linear-space P(haplotype 0) over all fragments."""
    bins = np.linspace(0.0, 1.0, n_bins + 1)
    p = np.exp(np.array([a.p_hap0 for a in assignments], dtype=np.float64))
    counts = np.histogram(p, bins=bins)[0]
    return {"bin_edges": bins.tolist(), "counts": counts.tolist()}


def write_assignments_tsv(assignments: Iterable[HaplotypeAssignment], path: str | Path) -> Path:
    path = Path(path)
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write("\t".join(["fragment_id", "n_calls", "p_hap0", "p_hap1", "class"]) + "\n")
        for a in assignments:
            fh.write(
                f"{a.fragment_id}\t{a.n_calls}\t{math.exp(a.p_hap0):.6f}\t"
                f"{math.exp(a.p_hap1):.6f}\t{a.cls}\n"
            )
    return path


def split_bam_by_haplotype(
    *,
    bam_path: str | Path,
    hap0_ids: Set[str],
    hap1_ids: Set[str],
    out_prefix: str | Path,
    tag_reads: bool = True,
    write_unassigned: bool = True,
    progress: bool = True,
) -> Dict[str, object]:
    """Write reads of a BAM into per-haplotype BAMs by query name.

    Outputs ``<prefix>.hap1.bam`` (haplotype 0 ids), ``<prefix>.hap2.bam``
    (haplotype 1 ids) and optionally ``<prefix>.unassigned.bam``. Assigned
    reads get an ``HP`` tag of 1 or 2 when ``tag_reads`` is set.
    """
    if hap0_ids & hap1_ids:
        raise ValueError("Haplotype read-id sets must be disjoint")

    prefix = str(out_prefix)
    Path(prefix).parent.mkdir(parents=True, exist_ok=True)
    paths = {
        "0": f"{prefix}.hap1.bam",
        "1": f"{prefix}.hap2.bam",
        "U": f"{prefix}.unassigned.bam",
    }
    counts = {"reads_total": 0, "reads_hap1": 0, "reads_hap2": 0, "reads_unassigned": 0}

    bam = pysam.AlignmentFile(str(bam_path), "rb", check_sq=False)
    out_fhs: Dict[str, Optional[pysam.AlignmentFile]] = {
        "0": pysam.AlignmentFile(paths["0"], "wb", template=bam),
        "1": pysam.AlignmentFile(paths["1"], "wb", template=bam),
        "U": pysam.AlignmentFile(paths["U"], "wb", template=bam) if write_unassigned else None,
    }

    it: Iterable[pysam.AlignedSegment] = bam.fetch(until_eof=True)
    if progress:
        it = tqdm(it, unit="read", desc="Splitting reads")

    try:
        for read in it:
            counts["reads_total"] += 1
            qname = read.query_name
            if qname in hap0_ids:
                cls = "0"
                counts["reads_hap1"] += 1
            elif qname in hap1_ids:
                cls = "1"
                counts["reads_hap2"] += 1
            else:
                cls = "U"
                counts["reads_unassigned"] += 1

            if tag_reads and cls != "U":
                read.set_tag("HP", _HP_TAG_VALUE[cls], value_type="i")

            fh = out_fhs[cls]
            if fh is not None:
                fh.write(read)
    finally:
        bam.close()
        for fh in out_fhs.values():
            if fh is not None:
                fh.close()

    logger.info(
        "Split %d reads: hap1=%d hap2=%d unassigned=%d",
        counts["reads_total"],
        counts["reads_hap1"],
        counts["reads_hap2"],
        counts["reads_unassigned"],
    )
    return {
        "hap1_bam": paths["0"],
        "hap2_bam": paths["1"],
        "unassigned_bam": paths["U"] if write_unassigned else None,
        "counts": counts,
    }
