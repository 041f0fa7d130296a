import json
import os
import subprocess
import sys
from pathlib import Path

from readphase.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "readphase"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def _fake_hapcut(path: Path) -> Path:
    path.write_text(
        "#!/bin/sh\n"
        'while [ $# -gt 0 ]; do\n'
        '  case "$1" in --output) out="$2"; shift;; esac\n'
        "  shift\n"
        "done\n"
        "printf 'BLOCK: offset: 1 len: 3 phased: 3\\n1\\t0\\t1\\n2\\t1\\t0\\n3\\t0\\t1\\n********\\n' > \"$out\"\n",
        encoding="utf-8",
    )
    os.chmod(path, 0o755)
    return path


def test_cli_help() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "readphase", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "readphase" in cp.stdout.lower()


def test_make_toy_data_dry_run(tmp_path: Path) -> None:
    cp = _run_cli(["make-toy-data", "--outdir", str(tmp_path / "toy"), "--dry-run"])
    assert cp.returncode == 0
    assert not (tmp_path / "toy").exists()


def test_separate_with_bam_split(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir)])
    assert cp.returncode == 0

    outdir = tmp_path / "sep"
    cp = _run_cli(
        [
            "separate",
            "--fragments",
            str(toy_dir / "fragments.json"),
            "--bam",
            str(toy_dir / "reads.bam"),
            "--outdir",
            str(outdir),
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "report.html").exists()
    assert (outdir / "reads.hap1.bam").exists()
    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["counts"]["fragments_total"] == 80
    assert summary["split_bams"]["counts"]["reads_total"] == 80


def test_separate_dry_run_does_not_write_outputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "sep"
    cp = _run_cli(["separate", "--fragments", toy["fragments"], "--outdir", str(outdir), "--dry-run"])
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert not (outdir / "summary.json").exists()


def test_encode_writes_solver_inputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "enc"
    cp = _run_cli(
        ["encode", "--fragments", toy["fragments"], "--variants", toy["variants"], "--outdir", str(outdir)]
    )
    assert cp.returncode == 0, cp.stderr

    lines = (outdir / "fragments.txt").read_text().splitlines()
    assert lines
    for line in lines:
        fields = line.split(" ")
        n_blocks = int(fields[0])
        assert len(fields) == 2 + 2 * n_blocks + 1
    assert len((outdir / "variants.vcf").read_text().splitlines()) == 30


def test_phase_dry_run(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "phase"
    cp = _run_cli(
        [
            "phase",
            "--fragments",
            toy["fragments"],
            "--variants",
            toy["variants"],
            "--outdir",
            str(outdir),
            "--dry-run",
        ]
    )
    assert cp.returncode == 0
    assert "Solver executable: HAPCUT2" in cp.stdout
    assert not outdir.exists()


def test_phase_then_mec(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    solver = _fake_hapcut(tmp_path / "fake_hapcut2")

    outdir = tmp_path / "phase"
    cp = _run_cli(
        [
            "phase",
            "--fragments",
            toy["fragments"],
            "--variants",
            toy["variants"],
            "--outdir",
            str(outdir),
            "--solver-exe",
            str(solver),
        ]
    )
    assert cp.returncode == 0, cp.stderr
    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["variants_phased"] == 3
    assert summary["mec"]["n_blocks"] == 1

    mec_out = tmp_path / "mec"
    cp = _run_cli(
        [
            "mec",
            "--fragments",
            toy["fragments"],
            "--variants",
            str(outdir / "phased_variants.json"),
            "--outdir",
            str(mec_out),
        ]
    )
    assert cp.returncode == 0, cp.stderr
    again = json.loads((mec_out / "summary.json").read_text())
    assert again["mec"]["mec_total"] == summary["mec"]["mec_total"]


def test_phase_missing_solver_exits_2(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        [
            "phase",
            "--fragments",
            toy["fragments"],
            "--variants",
            toy["variants"],
            "--outdir",
            str(tmp_path / "phase"),
            "--solver-exe",
            str(tmp_path / "no_such_solver"),
        ]
    )
    assert cp.returncode == 2
    assert "not found" in cp.stderr
