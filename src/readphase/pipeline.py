"""Encode -> solve -> write back -> MEC, and the shared output writers."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .classifier import (
    assignment_counts,
    classify_fragments,
    posterior_histogram,
    write_assignments_tsv,
)
from .encoder import generate_flist_buffer, generate_variant_buffer, phase_variant_mask
from .mec import calculate_mec, count_alleles, summarize_mec, write_variant_table
from .models import Fragment, VarList
from .plotting import plot_block_mec, plot_class_counts, plot_posterior_hist, plot_variant_mec_hist
from .report import render_report
from .solver import PhasingSolver, apply_solver_output, call_solver
from .tables import save_variants
from .utils import ensure_outdir, write_json

logger = logging.getLogger(__name__)


def recount_alleles(fragments: Sequence[Fragment], varlist: VarList) -> None:
    for var, counts in zip(varlist, count_alleles(fragments, len(varlist))):
        var.allele_counts = counts


def phase_and_evaluate(
    *,
    fragments: Sequence[Fragment],
    varlist: VarList,
    solver: PhasingSolver,
    max_p_miscall: float = 0.1,
    phase_variant: Optional[List[bool]] = None,
) -> Dict[str, Any]:
    """Phase ``varlist`` with ``solver`` and evaluate the result with MEC.

    ``varlist`` is updated in place with genotypes, phase sets and MEC
    statistics. ``phase_variant`` defaults to all heterozygous variants.
    """
    t0 = time.time()
    mask = phase_variant if phase_variant is not None else phase_variant_mask(varlist)

    frag_buffer = generate_flist_buffer(fragments, mask, max_p_miscall)
    var_buffer = generate_variant_buffer(varlist, mask)

    result = call_solver(solver, frag_buffer, var_buffer)
    n_phased = apply_solver_output(varlist, result, mask)

    calculate_mec(fragments, varlist, max_p_miscall)
    mec = summarize_mec(varlist)

    return {
        "max_p_miscall": float(max_p_miscall),
        "fragments_total": len(fragments),
        "fragments_encoded": len(frag_buffer),
        "variants_total": len(varlist),
        "variants_in_mask": int(sum(bool(m) for m in mask)),
        "variants_phased": n_phased,
        "mec": mec,
        "runtime_seconds": float(time.time() - t0),
    }


def write_mec_outputs(
    *,
    outdir: str | Path,
    varlist: VarList,
    summary: Dict[str, Any],
    inputs: Dict[str, Any],
    params: Dict[str, Any],
    version: str,
) -> Path:
    """Write variant table, summary.json, plots and report.html; return the report path."""
    outdir_p = ensure_outdir(outdir)

    save_variants(varlist, outdir_p / "phased_variants.json")
    write_variant_table(varlist, outdir_p / "variants_mec.tsv")
    write_json(outdir_p / "summary.json", summary)

    plots_dir = outdir_p / "plots"
    block_png = plots_dir / "block_mec.png"
    variant_png = plots_dir / "variant_mec_hist.png"
    plot_block_mec(blocks=summary["mec"]["blocks"], out_png=block_png)
    plot_variant_mec_hist(mec_fracs=[v.mec_frac_variant for v in varlist.phased()], out_png=variant_png)

    return render_report(
        outdir=outdir_p,
        version=version,
        inputs=inputs,
        params=params,
        mec=summary["mec"],
        plots={
            "block_mec": str(Path("plots") / block_png.name),
            "variant_mec_hist": str(Path("plots") / variant_png.name),
        },
    )


def separate_and_report(
    *,
    fragments: Sequence[Fragment],
    threshold: float,
    outdir: str | Path,
    inputs: Dict[str, Any],
    params: Dict[str, Any],
    version: str,
) -> Dict[str, Any]:
    """Classify fragments, write id lists, assignments TSV, plots and report."""
    outdir_p = ensure_outdir(outdir)

    assignments = classify_fragments(fragments, threshold)
    hap0 = sorted(a.fragment_id for a in assignments if a.cls == "0")
    hap1 = sorted(a.fragment_id for a in assignments if a.cls == "1")
    (outdir_p / "hap0_reads.txt").write_text("".join(f"{x}\n" for x in hap0), encoding="utf-8")
    (outdir_p / "hap1_reads.txt").write_text("".join(f"{x}\n" for x in hap1), encoding="utf-8")
    tsv = write_assignments_tsv(assignments, outdir_p / "assignments.tsv.gz")

    counts = assignment_counts(assignments)
    hist = posterior_histogram(assignments)

    plots_dir = outdir_p / "plots"
    counts_png = plots_dir / "class_counts.png"
    posterior_png = plots_dir / "posterior_hist.png"
    plot_class_counts(class_counts=counts, out_png=counts_png)
    plot_posterior_hist(bin_edges=hist["bin_edges"], counts=hist["counts"], out_png=posterior_png)

    report = render_report(
        outdir=outdir_p,
        version=version,
        inputs=inputs,
        params=params,
        counts=counts,
        plots={
            "class_counts": str(Path("plots") / counts_png.name),
            "posterior_hist": str(Path("plots") / posterior_png.name),
        },
    )

    return {
        "counts": counts,
        "posterior_hist": hist,
        "hap0_ids": set(hap0),
        "hap1_ids": set(hap1),
        "assignments_tsv_gz": str(tsv),
        "report": str(report),
    }
