"""Boundary to the external combinatorial phasing solver (HapCUT2).

The solver is treated as an opaque, synchronous, single-shot function. This
module owns buffer allocation before the call and validation after it; it
holds no phasing logic of its own.
"""

from __future__ import annotations

import ctypes
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple

import numpy as np

from .encoder import write_buffer
from .external import ensure_executable_in_path, run_command
from .models import PhasingDataError, VarList

logger = logging.getLogger(__name__)

# Phase-set value the solver writes for variants outside every block.
UNPHASED = -1

_HAP_BYTE_TO_ALLELE = {0: 0, 1: 1, ord("0"): 0, ord("1"): 1}


class SolverBoundaryError(PhasingDataError):
    """Solver inputs or outputs do not match the requested counts."""


class PhasingSolver(Protocol):
    """Interface of the external solver.

    ``haplotype_out`` has one byte per variant (the haplotype-0 allele) and
    ``phase_sets_out`` one int32 per variant (``UNPHASED`` if not phased).
    Both are allocated by the caller and filled in place.
    """

    def solve(
        self,
        fragment_buffer: Sequence[bytes],
        variant_buffer: Sequence[bytes],
        n_fragments: int,
        n_variants: int,
        haplotype_out: bytearray,
        phase_sets_out: np.ndarray,
    ) -> None:
        ...


@dataclass(frozen=True)
class SolverResult:
    haplotype: bytes
    phase_sets: np.ndarray

    def __len__(self) -> int:
        return len(self.haplotype)


def _freeze_records(records: Sequence[bytes], what: str) -> Tuple[bytes, ...]:
    frozen = tuple(bytes(r) for r in records)
    for i, rec in enumerate(frozen):
        if not rec.endswith(b"\0"):
            raise SolverBoundaryError(f"{what} record {i} is not NUL-terminated")
    return frozen


def call_solver(
    solver: PhasingSolver,
    fragment_buffer: Sequence[bytes],
    variant_buffer: Sequence[bytes],
) -> SolverResult:
    """Run the solver once on encoded buffers and return validated outputs."""
    frags = _freeze_records(fragment_buffer, "fragment")
    variants = _freeze_records(variant_buffer, "variant")
    n_fragments = len(frags)
    n_variants = len(variants)

    haplotype_out = bytearray(n_variants)
    phase_sets_out = np.full(n_variants, UNPHASED, dtype=np.int32)

    logger.info("Calling phasing solver on %d fragments and %d variants", n_fragments, n_variants)
    solver.solve(frags, variants, n_fragments, n_variants, haplotype_out, phase_sets_out)

    if len(haplotype_out) != n_variants:
        raise SolverBoundaryError(
            f"Solver returned {len(haplotype_out)} haplotype entries for {n_variants} variants"
        )
    if phase_sets_out.shape != (n_variants,):
        raise SolverBoundaryError(
            f"Solver returned phase-set array of shape {phase_sets_out.shape} for {n_variants} variants"
        )

    return SolverResult(haplotype=bytes(haplotype_out), phase_sets=phase_sets_out.copy())


def apply_solver_output(
    varlist: VarList,
    result: SolverResult,
    phase_variant: Optional[Sequence[bool]] = None,
) -> int:
    """Write solver haplotypes and phase sets back into the variant table.

    Returns the number of phased variants.
    """
    if len(result.haplotype) != len(varlist) or len(result.phase_sets) != len(varlist):
        raise SolverBoundaryError(
            f"Solver output covers {len(result.haplotype)} variants, variant table has {len(varlist)}"
        )
    if phase_variant is not None and len(phase_variant) != len(varlist):
        raise PhasingDataError(
            f"phase_variant has {len(phase_variant)} entries for {len(varlist)} variants"
        )

    n_phased = 0
    for i, var in enumerate(varlist):
        ps = int(result.phase_sets[i])
        allele = _HAP_BYTE_TO_ALLELE.get(result.haplotype[i])
        if ps < 0 or allele is None or (phase_variant is not None and not phase_variant[i]):
            var.phase_set = None
            continue
        var.genotype = (allele, 1 - allele)
        var.phase_set = ps
        n_phased += 1

    logger.info("Solver phased %d of %d variants", n_phased, len(varlist))
    return n_phased


class SharedLibrarySolver:
    """Solver bound to a C entry point in a shared library.

    Expected signature::

        void hapcut2(char **fragments, char **variants, size_t n_fragments,
                     size_t n_variants, uint8_t *hap1, int32_t *phase_sets);
    """

    def __init__(self, library: str | Path, *, symbol: str = "hapcut2") -> None:
        self.library = str(library)
        self.symbol = symbol
        lib = ctypes.CDLL(self.library)
        fn = getattr(lib, symbol)
        fn.argtypes = [
            ctypes.POINTER(ctypes.c_char_p),
            ctypes.POINTER(ctypes.c_char_p),
            ctypes.c_size_t,
            ctypes.c_size_t,
            ctypes.POINTER(ctypes.c_uint8),
            ctypes.POINTER(ctypes.c_int32),
        ]
        fn.restype = None
        self._fn = fn

    def solve(
        self,
        fragment_buffer: Sequence[bytes],
        variant_buffer: Sequence[bytes],
        n_fragments: int,
        n_variants: int,
        haplotype_out: bytearray,
        phase_sets_out: np.ndarray,
    ) -> None:
        frag_ptrs = (ctypes.c_char_p * n_fragments)(*fragment_buffer)
        var_ptrs = (ctypes.c_char_p * n_variants)(*variant_buffer)
        hap = (ctypes.c_uint8 * n_variants).from_buffer(haplotype_out)
        if not phase_sets_out.flags["C_CONTIGUOUS"] or phase_sets_out.dtype != np.int32:
            raise SolverBoundaryError("phase_sets_out must be a contiguous int32 array")
        self._fn(
            frag_ptrs,
            var_ptrs,
            n_fragments,
            n_variants,
            hap,
            phase_sets_out.ctypes.data_as(ctypes.POINTER(ctypes.c_int32)),
        )
        del hap  # release the exported buffer before the caller inspects it


_VCF_HEADER = (
    "##fileformat=VCFv4.2\n"
    '##FORMAT=<ID=GT,Number=1,Type=String,Description="Genotype">\n'
    "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\tSAMPLE\n"
)


def parse_hapcut_blocks(lines: Sequence[str], n_variants: int) -> Tuple[bytearray, np.ndarray]:
    """Parse HapCUT2 haplotype output into (haplotype bytes, phase-set ids).

    Block headers look like ``BLOCK: offset: 12 len: 5 ...`` and variant lines
    start with the 1-based variant index and the haplotype-1 allele (``-`` if
    the variant was left unphased). The phase-set id of a block is the 0-based
    index of its first variant.
    """
    hap = bytearray(b"-" * n_variants)
    phase_sets = np.full(n_variants, UNPHASED, dtype=np.int32)

    block_id: Optional[int] = None
    for line in lines:
        line = line.strip()
        if not line or line.startswith("*"):
            block_id = None
            continue
        fields = line.split()
        if fields[0] == "BLOCK:":
            block_id = int(fields[2]) - 1
            continue
        if block_id is None:
            raise SolverBoundaryError(f"Variant line outside a block in solver output: {line!r}")
        ix = int(fields[0]) - 1
        if not 0 <= ix < n_variants:
            raise SolverBoundaryError(
                f"Solver output references variant {ix + 1} but only {n_variants} were given"
            )
        allele = fields[1]
        if allele in ("0", "1"):
            hap[ix] = ord(allele)
            phase_sets[ix] = block_id
    return hap, phase_sets


class HapcutCommandSolver:
    """Run the HapCUT2 executable on temporary fragment/VCF files."""

    def __init__(
        self,
        executable: str = "HAPCUT2",
        *,
        workdir: Optional[str | Path] = None,
        extra_args: Sequence[str] = (),
    ) -> None:
        self.executable = executable
        self.workdir = Path(workdir) if workdir is not None else None
        self.extra_args: List[str] = list(extra_args)

    def build_command(self, fragments_path: Path, vcf_path: Path, out_path: Path) -> List[str]:
        return [
            self.executable,
            "--fragments",
            str(fragments_path),
            "--VCF",
            str(vcf_path),
            "--output",
            str(out_path),
        ] + self.extra_args

    def solve(
        self,
        fragment_buffer: Sequence[bytes],
        variant_buffer: Sequence[bytes],
        n_fragments: int,
        n_variants: int,
        haplotype_out: bytearray,
        phase_sets_out: np.ndarray,
    ) -> None:
        ensure_executable_in_path(
            self.executable,
            hint=(
                "Install HapCUT2 (https://github.com/vibansal/HapCUT2).\n"
                "Conda/mamba: mamba install -c bioconda hapcut2"
            ),
        )

        if self.workdir is not None:
            self.workdir.mkdir(parents=True, exist_ok=True)
            self._run(self.workdir, fragment_buffer, variant_buffer, n_variants, haplotype_out, phase_sets_out)
            return
        with tempfile.TemporaryDirectory(prefix="readphase_") as tmp:
            self._run(Path(tmp), fragment_buffer, variant_buffer, n_variants, haplotype_out, phase_sets_out)

    def _run(
        self,
        workdir: Path,
        fragment_buffer: Sequence[bytes],
        variant_buffer: Sequence[bytes],
        n_variants: int,
        haplotype_out: bytearray,
        phase_sets_out: np.ndarray,
    ) -> None:
        fragments_path = write_buffer(fragment_buffer, workdir / "fragments.txt")
        vcf_path = workdir / "variants.vcf"
        with open(vcf_path, "wb") as fh:
            fh.write(_VCF_HEADER.encode("ascii"))
            for rec in variant_buffer:
                fh.write(rec.rstrip(b"\0") + b"\n")
        out_path = workdir / "haplotypes.txt"

        run_command(self.build_command(fragments_path, vcf_path, out_path))

        if not out_path.exists():
            raise SolverBoundaryError(f"Solver did not write its output file: {out_path}")
        lines = out_path.read_text(encoding="utf-8").splitlines()
        hap, phase_sets = parse_hapcut_blocks(lines, n_variants)
        haplotype_out[:] = hap
        phase_sets_out[:] = phase_sets
