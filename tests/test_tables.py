import gzip
import json
from pathlib import Path

import pytest

from readphase.models import PhasingDataError, Variant, VarList
from readphase.tables import (
    fragment_from_dict,
    load_fragments,
    load_variants,
    save_variants,
)


def test_fragment_from_dict():
    f = fragment_from_dict({"id": "r1", "p_read_hap": [-0.1, -3.0], "calls": [[0, 1, -6.9], [2, 0, -4.6]]})
    assert f.id == "r1"
    assert f.p_read_hap == (-0.1, -3.0)
    assert [c.variant_index for c in f.calls] == [0, 2]
    assert f.calls[0].allele == 1


def test_fragment_calls_must_be_ordered():
    with pytest.raises(PhasingDataError):
        fragment_from_dict({"id": "r1", "calls": [[3, 1, -6.9], [2, 0, -4.6]]})


def test_load_fragments_gz(tmp_path: Path):
    p = tmp_path / "frags.json.gz"
    with gzip.open(p, "wt") as fh:
        json.dump({"fragments": [{"id": "a", "calls": [[0, 0, -2.0]]}]}, fh)
    frags = load_fragments(p)
    assert len(frags) == 1
    assert frags[0].p_read_hap == (0.0, 0.0)


def test_variant_table_must_be_ordered(tmp_path: Path):
    p = tmp_path / "variants.json"
    p.write_text(json.dumps({"variants": [{"index": 1}, {"index": 0}]}), encoding="utf-8")
    with pytest.raises(PhasingDataError):
        load_variants(p)


def test_save_and_load_variants(tmp_path: Path):
    vl = VarList.from_variants(
        [
            Variant(index=0, chrom="chr2", pos0=10, alleles=("A", "C"), phase_set=0, allele_counts=(3, 4)),
            Variant(index=1, genotype=(1, 1)),
        ]
    )
    path = save_variants(vl, tmp_path / "v.json")
    back = load_variants(path)

    assert len(back) == 2
    v0 = back.get(0)
    assert (v0.chrom, v0.pos0, v0.alleles, v0.phase_set, v0.allele_counts) == ("chr2", 10, ("A", "C"), 0, (3, 4))
    assert back.get(1).phase_set is None
    assert not back.get(1).is_heterozygous


def test_missing_top_level_key(tmp_path: Path):
    p = tmp_path / "x.json"
    p.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError):
        load_fragments(p)
