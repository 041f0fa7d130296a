import os
from pathlib import Path

import numpy as np
import pytest

from readphase.external import ExternalCommandError
from readphase.models import Variant, VarList
from readphase.solver import (
    UNPHASED,
    HapcutCommandSolver,
    SolverBoundaryError,
    SolverResult,
    apply_solver_output,
    call_solver,
    parse_hapcut_blocks,
)


class StubSolver:
    """Phases every other variant into a single block."""

    def __init__(self):
        self.calls = []

    def solve(self, fragment_buffer, variant_buffer, n_fragments, n_variants, haplotype_out, phase_sets_out):
        self.calls.append((list(fragment_buffer), list(variant_buffer), n_fragments, n_variants))
        for i in range(n_variants):
            haplotype_out[i] = i % 2
            phase_sets_out[i] = 0 if i % 2 == 0 else UNPHASED


class ShrinkingSolver:
    def solve(self, fragment_buffer, variant_buffer, n_fragments, n_variants, haplotype_out, phase_sets_out):
        del haplotype_out[-1]


def _varlist(n):
    return VarList.from_variants([Variant(index=i) for i in range(n)])


def test_call_solver_passes_counts_and_returns_outputs():
    solver = StubSolver()
    frags = [b"1 r1 1 01 ;;\0"]
    variants = [b"chr1\t1\t.\tA\tG\t.\tPASS\t.\tGT\t0/1\0"] * 4
    res = call_solver(solver, frags, variants)

    assert solver.calls[0][2:] == (1, 4)
    assert len(res) == 4
    assert res.haplotype == bytes([0, 1, 0, 1])
    assert res.phase_sets.tolist() == [0, -1, 0, -1]


def test_call_solver_rejects_length_mismatch():
    with pytest.raises(SolverBoundaryError):
        call_solver(ShrinkingSolver(), [], [b"x\0", b"y\0"])


def test_call_solver_requires_nul_terminated_records():
    with pytest.raises(SolverBoundaryError):
        call_solver(StubSolver(), [b"1 r1 1 01 ;;"], [b"x\0"])


def test_apply_solver_output():
    vl = _varlist(4)
    res = SolverResult(haplotype=bytes([1, 0, 0, 1]), phase_sets=np.array([0, 0, -1, 3], dtype=np.int32))
    n = apply_solver_output(vl, res)

    assert n == 3
    assert vl.get(0).genotype == (1, 0) and vl.get(0).phase_set == 0
    assert vl.get(1).genotype == (0, 1) and vl.get(1).phase_set == 0
    assert vl.get(2).phase_set is None
    assert vl.get(3).phase_set == 3
    assert vl.phase_sets() == [0, 3]


def test_apply_solver_output_respects_mask_and_unknown_bytes():
    vl = _varlist(3)
    res = SolverResult(haplotype=b"0-1", phase_sets=np.array([5, 5, 5], dtype=np.int32))
    n = apply_solver_output(vl, res, [True, True, False])
    assert n == 1
    assert vl.get(0).phase_set == 5
    assert vl.get(1).phase_set is None
    assert vl.get(2).phase_set is None


def test_apply_solver_output_size_mismatch():
    res = SolverResult(haplotype=bytes(2), phase_sets=np.zeros(2, dtype=np.int32))
    with pytest.raises(SolverBoundaryError):
        apply_solver_output(_varlist(3), res)


_HAPCUT_OUT = [
    "BLOCK: offset: 2 len: 2 phased: 2 SPAN: 100 fragments 3",
    "2\t0\t1\tchr1\t200\tA\tG\t0/1",
    "3\t1\t0\tchr1\t300\tC\tT\t0/1",
    "********",
    "BLOCK: offset: 5 len: 2 phased: 1 SPAN: 50 fragments 1",
    "5\t1\t0\tchr1\t500\tG\tA\t0/1",
    "6\t-\t-\tchr1\t600\tT\tC\t0/1",
    "********",
]


def test_parse_hapcut_blocks():
    hap, ps = parse_hapcut_blocks(_HAPCUT_OUT, 6)
    assert bytes(hap) == b"-01-1-"
    assert ps.tolist() == [-1, 1, 1, -1, 4, -1]


def test_parse_hapcut_blocks_rejects_out_of_range_index():
    with pytest.raises(SolverBoundaryError):
        parse_hapcut_blocks(_HAPCUT_OUT, 4)


def test_command_solver_builds_hapcut_arguments(tmp_path: Path):
    solver = HapcutCommandSolver("HAPCUT2", extra_args=["--threshold", "30"])
    cmd = solver.build_command(tmp_path / "f.txt", tmp_path / "v.vcf", tmp_path / "out.txt")
    assert cmd[0] == "HAPCUT2"
    assert cmd[cmd.index("--fragments") + 1] == str(tmp_path / "f.txt")
    assert cmd[cmd.index("--VCF") + 1] == str(tmp_path / "v.vcf")
    assert cmd[cmd.index("--output") + 1] == str(tmp_path / "out.txt")
    assert cmd[-2:] == ["--threshold", "30"]


def test_command_solver_runs_executable(tmp_path: Path):
    script = tmp_path / "fake_hapcut2"
    script.write_text(
        "#!/bin/sh\n"
        'while [ $# -gt 0 ]; do\n'
        '  case "$1" in --output) out="$2"; shift;; esac\n'
        "  shift\n"
        "done\n"
        "printf 'BLOCK: offset: 1 len: 2 phased: 2\\n1\\t1\\t0\\n2\\t0\\t1\\n********\\n' > \"$out\"\n",
        encoding="utf-8",
    )
    os.chmod(script, 0o755)

    solver = HapcutCommandSolver(str(script), workdir=tmp_path / "work")
    res = call_solver(solver, [b"1 r1 1 10 ;;\0"], [b"chr1\t1\t.\tA\tG\t.\tPASS\t.\tGT\t0/1\0"] * 3)

    assert res.phase_sets.tolist() == [0, 0, -1]
    assert res.haplotype[:2] == b"10"
    assert (tmp_path / "work" / "fragments.txt").read_text() == "1 r1 1 10 ;;\n"

    vl = _varlist(3)
    assert apply_solver_output(vl, res) == 2
    assert vl.get(0).genotype == (1, 0)


def test_command_solver_missing_executable(tmp_path: Path):
    solver = HapcutCommandSolver(str(tmp_path / "nope"))
    with pytest.raises(FileNotFoundError):
        call_solver(solver, [], [b"x\0"])


def test_command_solver_failure_reports_stderr(tmp_path: Path):
    script = tmp_path / "failing_hapcut2"
    script.write_text("#!/bin/sh\necho 'bad fragment file' >&2\nexit 3\n", encoding="utf-8")
    os.chmod(script, 0o755)

    solver = HapcutCommandSolver(str(script), workdir=tmp_path / "work")
    with pytest.raises(ExternalCommandError) as exc:
        call_solver(solver, [b"1 r1 1 10 ;;\0"], [b"x\0"])
    assert exc.value.returncode == 3
    assert "bad fragment file" in str(exc.value)
