from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .classifier import split_bam_by_haplotype
from .doctor import collect_checks
from .encoder import (
    generate_flist_buffer,
    generate_variant_buffer,
    phase_variant_mask,
    write_buffer,
)
from .external import ExternalCommandError
from .mec import calculate_mec, summarize_mec
from .models import VarList
from .pipeline import phase_and_evaluate, recount_alleles, separate_and_report, write_mec_outputs
from .solver import HapcutCommandSolver, PhasingSolver, SharedLibrarySolver
from .tables import load_fragments, load_variants
from .toy_data import make_toy_data
from .utils import ensure_outdir, hap_threshold_from_qual, write_json


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _probability(p: str) -> float:
    v = float(p)
    if not 0.0 < v <= 1.0:
        raise argparse.ArgumentTypeError(f"Expected a probability in (0, 1], got {p}")
    return v


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    if isinstance(err, ExternalCommandError):
        msg = str(err)
    else:
        msg = f"{err.__class__.__name__}: {err}"

    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _phase_mask(varlist: VarList, phase_all: bool) -> List[bool]:
    if phase_all:
        return [True] * len(varlist)
    return phase_variant_mask(varlist)


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="readphase",
        description=(
            "readphase: read-to-haplotype classification, phasing-solver input encoding "
            "and MEC (minimum error correction) phasing-quality statistics."
        ),
    )
    p.add_argument("--version", action="version", version=f"readphase {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a small two-haplotype fragment/variant dataset and BAM for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--seed", type=int, default=7, help="Random seed.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # separate
    # -----------------
    s = sub.add_parser(
        "separate",
        help="Assign fragments to haplotype 0/1 by posterior probability of origin.",
    )
    s.add_argument("--fragments", required=True, type=_path_exists, help="Fragment table (.json/.json.gz).")
    s.add_argument("--outdir", required=True, help="Output directory.")
    s.add_argument(
        "--hap-assignment-qual",
        type=float,
        default=20.0,
        help="Minimum PHRED-scaled posterior to assign a read (20 => P > 0.99).",
    )
    s.add_argument(
        "--bam",
        default=None,
        type=_path_exists,
        help="Optional BAM to split into <outdir>/reads.hap1.bam / .hap2.bam / .unassigned.bam.",
    )
    s.add_argument("--no-tag", action="store_true", help="Do not add HP tags to split reads.")
    _add_common(s)

    # -----------------
    # encode
    # -----------------
    e = sub.add_parser(
        "encode",
        help="Write solver input files (fragment file + VCF-style variant file).",
    )
    e.add_argument("--fragments", required=True, type=_path_exists, help="Fragment table (.json/.json.gz).")
    e.add_argument("--variants", required=True, type=_path_exists, help="Variant table (.json/.json.gz).")
    e.add_argument("--outdir", required=True, help="Output directory.")
    e.add_argument(
        "--max-p-miscall",
        type=_probability,
        default=0.1,
        help="Calls with miscall probability at or above this value are ignored.",
    )
    e.add_argument("--phase-all", action="store_true", help="Include homozygous variants in the mask.")
    _add_common(e)

    # -----------------
    # phase
    # -----------------
    ph = sub.add_parser(
        "phase",
        help="Encode, run the phasing solver, write back phase sets and compute MEC.",
    )
    ph.add_argument("--fragments", required=True, type=_path_exists, help="Fragment table (.json/.json.gz).")
    ph.add_argument("--variants", required=True, type=_path_exists, help="Variant table (.json/.json.gz).")
    ph.add_argument("--outdir", required=True, help="Output directory.")
    ph.add_argument("--max-p-miscall", type=_probability, default=0.1, help="Miscall probability ceiling.")
    ph.add_argument("--phase-all", action="store_true", help="Include homozygous variants in the mask.")
    solver_group = ph.add_mutually_exclusive_group()
    solver_group.add_argument(
        "--solver-exe",
        default="HAPCUT2",
        help="HapCUT2 executable name or path (default: HAPCUT2).",
    )
    solver_group.add_argument(
        "--solver-lib",
        default=None,
        type=_path_exists,
        help="Shared library exporting the solver entry point (used instead of the executable).",
    )
    ph.add_argument(
        "--recount-alleles",
        action="store_true",
        help="Recompute per-variant allele counts from the fragments before MEC.",
    )
    ph.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")
    _add_common(ph)

    # -----------------
    # mec
    # -----------------
    m = sub.add_parser(
        "mec",
        help="Compute MEC statistics for a variant table that already carries phase sets.",
    )
    m.add_argument("--fragments", required=True, type=_path_exists, help="Fragment table (.json/.json.gz).")
    m.add_argument("--variants", required=True, type=_path_exists, help="Phased variant table.")
    m.add_argument("--outdir", required=True, help="Output directory.")
    m.add_argument("--max-p-miscall", type=_probability, default=0.1, help="Miscall probability ceiling.")
    m.add_argument(
        "--recount-alleles",
        action="store_true",
        help="Recompute per-variant allele counts from the fragments before MEC.",
    )
    _add_common(m)

    # -----------------
    # doctor
    # -----------------
    d = sub.add_parser("doctor", help="Check that a phasing solver is available.")
    d.add_argument("--solver-exe", default="HAPCUT2", help="HapCUT2 executable name or path.")
    d.add_argument("--solver-lib", default=None, help="Shared library to check.")
    d.add_argument("--dry-run", action="store_true", help="Print checks without exiting nonzero.")
    d.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir, seed=int(args.seed))
    print(json.dumps(summary, indent=2))
    return 0


def cmd_separate(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "separate.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("readphase")
    logger.info("readphase %s", __version__)

    try:
        threshold = hap_threshold_from_qual(float(args.hap_assignment_qual))
        fragments = load_fragments(args.fragments)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Fragments: {len(fragments)}")
            print(f"Log-probability threshold: {threshold:.6g}")
            print("Planned outputs:")
            print(f"  hap0_reads.txt / hap1_reads.txt -> {outdir}")
            print(f"  assignments.tsv.gz -> {outdir / 'assignments.tsv.gz'}")
            if args.bam:
                print(f"  split BAMs -> {outdir / 'reads'}.hap1.bam/.hap2.bam/.unassigned.bam")
            return 0

        outdir = ensure_outdir(outdir)
        res = separate_and_report(
            fragments=fragments,
            threshold=threshold,
            outdir=outdir,
            inputs={"Fragments": args.fragments, "BAM": args.bam or "-"},
            params={"Haplotype assignment quality (PHRED)": args.hap_assignment_qual},
            version=__version__,
        )

        summary = {
            "fragments": args.fragments,
            "hap_assignment_qual": float(args.hap_assignment_qual),
            "threshold_log_prob": float(threshold),
            "counts": res["counts"],
            "posterior_hist": res["posterior_hist"],
            "assignments_tsv_gz": res["assignments_tsv_gz"],
        }
        if args.bam:
            summary["split_bams"] = split_bam_by_haplotype(
                bam_path=args.bam,
                hap0_ids=res["hap0_ids"],
                hap1_ids=res["hap1_ids"],
                out_prefix=outdir / "reads",
                tag_reads=not bool(args.no_tag),
                progress=args.verbose > 0,
            )
        write_json(outdir / "summary.json", summary)

        print(res["report"])
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_encode(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "encode.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    try:
        fragments = load_fragments(args.fragments)
        varlist = load_variants(args.variants)
        mask = _phase_mask(varlist, bool(args.phase_all))

        frag_buffer = generate_flist_buffer(fragments, mask, float(args.max_p_miscall))
        var_buffer = generate_variant_buffer(varlist, mask)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Fragments encoded: {len(frag_buffer)} of {len(fragments)}")
            print(f"Variants in mask: {sum(mask)} of {len(varlist)}")
            return 0

        outdir = ensure_outdir(outdir)
        frag_path = write_buffer(frag_buffer, outdir / "fragments.txt")
        var_path = write_buffer(var_buffer, outdir / "variants.vcf")
        write_json(
            outdir / "summary.json",
            {
                "fragments_total": len(fragments),
                "fragments_encoded": len(frag_buffer),
                "variants_total": len(varlist),
                "variants_in_mask": int(sum(mask)),
                "max_p_miscall": float(args.max_p_miscall),
                "fragment_file": str(frag_path),
                "variant_file": str(var_path),
            },
        )
        print(str(frag_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def _make_solver(args: argparse.Namespace, outdir: Path) -> PhasingSolver:
    if args.solver_lib:
        return SharedLibrarySolver(args.solver_lib)
    return HapcutCommandSolver(args.solver_exe, workdir=outdir / "solver")


def cmd_phase(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "phase.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("readphase")
    logger.info("readphase %s", __version__)

    try:
        fragments = load_fragments(args.fragments)
        varlist = load_variants(args.variants)
        mask = _phase_mask(varlist, bool(args.phase_all))

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Fragments: {len(fragments)}")
            print(f"Variants in mask: {sum(mask)} of {len(varlist)}")
            if args.solver_lib:
                print(f"Solver library: {args.solver_lib}")
            else:
                print(f"Solver executable: {args.solver_exe}")
            print("Planned outputs:")
            print(f"  report.html -> {outdir / 'report.html'}")
            print(f"  phased_variants.json -> {outdir / 'phased_variants.json'}")
            print(f"  variants_mec.tsv -> {outdir / 'variants_mec.tsv'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            return 0

        outdir = ensure_outdir(outdir)
        if args.resume and (outdir / "summary.json").exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            print(str(outdir / "report.html"))
            return 0

        if args.recount_alleles:
            recount_alleles(fragments, varlist)

        summary = phase_and_evaluate(
            fragments=fragments,
            varlist=varlist,
            solver=_make_solver(args, outdir),
            max_p_miscall=float(args.max_p_miscall),
            phase_variant=mask,
        )
        report_path = write_mec_outputs(
            outdir=outdir,
            varlist=varlist,
            summary=summary,
            inputs={"Fragments": args.fragments, "Variants": args.variants},
            params={
                "Max P(miscall)": args.max_p_miscall,
                "Solver": args.solver_lib or args.solver_exe,
                "Phase all variants": bool(args.phase_all),
            },
            version=__version__,
        )
        print(str(report_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_mec(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "mec.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    try:
        fragments = load_fragments(args.fragments)
        varlist = load_variants(args.variants)
        if args.recount_alleles:
            recount_alleles(fragments, varlist)

        calculate_mec(fragments, varlist, float(args.max_p_miscall))
        mec = summarize_mec(varlist)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Phased variants: {mec['n_phased']} in {mec['n_blocks']} blocks")
            print(f"MEC: {mec['mec_total']} / {mec['observations_total']}")
            return 0

        summary = {
            "max_p_miscall": float(args.max_p_miscall),
            "fragments_total": len(fragments),
            "variants_total": len(varlist),
            "mec": mec,
        }
        report_path = write_mec_outputs(
            outdir=outdir,
            varlist=varlist,
            summary=summary,
            inputs={"Fragments": args.fragments, "Variants": args.variants},
            params={"Max P(miscall)": args.max_p_miscall},
            version=__version__,
        )
        print(str(report_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_doctor(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    checks = collect_checks(solver_exe=args.solver_exe, solver_lib=args.solver_lib)

    lines = []
    ok_all = True
    for name, r in checks.items():
        status = "OK" if r.ok else "MISSING"
        lines.append(f"{name:10s} : {status:7s}  {r.detail}")
        if not r.ok:
            ok_all = False

    print("\n".join(lines))

    for name, r in checks.items():
        if not r.ok and r.howto:
            print("\n---")
            print(f"How to install/fix '{name}':")
            print(r.howto)

    if args.dry_run:
        return 0
    return 0 if ok_all else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "separate":
        return cmd_separate(args)
    if args.cmd == "encode":
        return cmd_encode(args)
    if args.cmd == "phase":
        return cmd_phase(args)
    if args.cmd == "mec":
        return cmd_mec(args)
    if args.cmd == "doctor":
        return cmd_doctor(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
