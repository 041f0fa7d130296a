import math
from pathlib import Path

import pysam
import pytest

from readphase.classifier import (
    assignment_counts,
    classify_fragment,
    separate_reads_by_haplotype,
    split_bam_by_haplotype,
)
from readphase.models import Call, Fragment
from readphase.tables import load_fragments
from readphase.toy_data import make_toy_data
from readphase.utils import DegenerateProbabilityError, hap_threshold_from_qual, normalize_log_pair


def _frag(fid: str, p0: float, p1: float) -> Fragment:
    return Fragment(id=fid, calls=(Call(0, 0, -3.0), Call(1, 1, -3.0)), p_read_hap=(p0, p1))


def test_strong_evidence_goes_to_hap0():
    t = math.log(0.99)
    h0, h1 = separate_reads_by_haplotype([_frag("r1", -0.01, -10.0)], t)
    assert h0 == {"r1"}
    assert h1 == set()


def test_strong_evidence_goes_to_hap1():
    t = math.log(0.99)
    h0, h1 = separate_reads_by_haplotype([_frag("r1", -12.0, -0.5)], t)
    assert h0 == set()
    assert h1 == {"r1"}


def test_ambiguous_fragment_is_unassigned():
    t = math.log(0.99)
    a = classify_fragment(_frag("r1", -1.0, -1.2), t)
    assert a.cls == "U"
    h0, h1 = separate_reads_by_haplotype([_frag("r1", -1.0, -1.2)], t)
    assert h0 == set() and h1 == set()


def test_posterior_equal_to_threshold_is_not_assigned():
    # comparison is strict
    p0, _ = normalize_log_pair(-2.0, -2.0)
    a = classify_fragment(_frag("r1", -2.0, -2.0), p0)
    assert a.cls == "U"


def test_sets_are_disjoint_for_permissive_threshold():
    frags = [_frag(f"r{i}", -float(i), -float(10 - i)) for i in range(1, 10)]
    h0, h1 = separate_reads_by_haplotype(frags, math.log(0.01))
    assert h0.isdisjoint(h1)
    assert h0 | h1 == {f.id for f in frags}


def test_degenerate_evidence_is_rejected():
    with pytest.raises(DegenerateProbabilityError):
        separate_reads_by_haplotype([_frag("r1", float("nan"), -1.0)], math.log(0.99))
    with pytest.raises(DegenerateProbabilityError):
        separate_reads_by_haplotype([_frag("r1", 0.3, -1.0)], math.log(0.99))


def test_bad_threshold_is_rejected():
    with pytest.raises(DegenerateProbabilityError):
        classify_fragment(_frag("r1", -1.0, -2.0), 0.1)


def test_assignment_counts():
    t = math.log(0.99)
    frags = [_frag("a", -0.001, -20.0), _frag("b", -20.0, -0.001), _frag("c", -1.0, -1.0)]
    counts = assignment_counts([classify_fragment(f, t) for f in frags])
    assert counts == {"fragments_total": 3, "class_0": 1, "class_1": 1, "class_U": 1}


def test_split_bam_on_toy_data(tmp_path: Path):
    toy = make_toy_data(outdir=tmp_path / "toy")
    fragments = load_fragments(toy["fragments"])
    h0, h1 = separate_reads_by_haplotype(fragments, hap_threshold_from_qual(20))
    assert h0 and h1

    res = split_bam_by_haplotype(
        bam_path=toy["reads_bam"],
        hap0_ids=h0,
        hap1_ids=h1,
        out_prefix=tmp_path / "split" / "reads",
        progress=False,
    )
    counts = res["counts"]
    assert counts["reads_total"] == len(fragments)
    assert counts["reads_hap1"] == len(h0)
    assert counts["reads_hap2"] == len(h1)

    with pysam.AlignmentFile(res["hap1_bam"], "rb", check_sq=False) as bam:
        names = set()
        for read in bam.fetch(until_eof=True):
            names.add(read.query_name)
            assert read.get_tag("HP") == 1
    assert names == h0


def test_split_bam_rejects_overlapping_sets(tmp_path: Path):
    with pytest.raises(ValueError):
        split_bam_by_haplotype(
            bam_path=tmp_path / "missing.bam",
            hap0_ids={"a"},
            hap1_ids={"a"},
            out_prefix=tmp_path / "x",
        )
