"""JSON tables of fragments and variants.

These files hold fragment/variant tables that were already extracted from
BAM/VCF input by an upstream tool. Both may be gzip-compressed (``.json.gz``).

Fragment table::

    {"fragments": [{"id": "read1", "p_read_hap": [-0.1, -2.3],
                    "calls": [[0, 1, -6.9], [1, 0, -4.6]]}, ...]}

where each call is ``[variant_index, allele, log_p_miscall]``.

Variant table::

    {"variants": [{"index": 0, "chrom": "chr1", "pos0": 999,
                   "alleles": ["A", "G"], "genotype": [0, 1],
                   "phase_set": null, "allele_counts": [12, 9]}, ...]}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from .models import Call, Fragment, PhasingDataError, Variant, VarList
from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)


def _read_json(path: str | Path) -> Dict[str, Any]:
    with open_textmaybe_gzip(path, "rt") as fh:
        return json.load(fh)


def _write_json(path: str | Path, obj: Any) -> Path:
    path = Path(path)
    with open_textmaybe_gzip(path, "wt") as fh:
        json.dump(obj, fh, indent=1)
    return path


def fragment_from_dict(d: Dict[str, Any]) -> Fragment:
    calls = tuple(Call(variant_index=int(c[0]), allele=int(c[1]), quality=float(c[2])) for c in d["calls"])
    for prev, cur in zip(calls, calls[1:]):
        if cur.variant_index < prev.variant_index:
            raise PhasingDataError(
                f"Fragment {d['id']!r}: calls must be ordered by variant index "
                f"({prev.variant_index} before {cur.variant_index})"
            )
    p = d.get("p_read_hap", [0.0, 0.0])
    if len(p) != 2:
        raise PhasingDataError(f"Fragment {d['id']!r}: p_read_hap must have two entries")
    return Fragment(id=str(d["id"]), calls=calls, p_read_hap=(float(p[0]), float(p[1])))


def fragment_to_dict(f: Fragment) -> Dict[str, Any]:
    return {
        "id": f.id,
        "p_read_hap": [f.p_read_hap[0], f.p_read_hap[1]],
        "calls": [[c.variant_index, c.allele, c.quality] for c in f.calls],
    }


def variant_from_dict(d: Dict[str, Any]) -> Variant:
    ps = d.get("phase_set")
    return Variant(
        index=int(d["index"]),
        genotype=(int(d["genotype"][0]), int(d["genotype"][1])) if "genotype" in d else (0, 1),
        phase_set=int(ps) if ps is not None else None,
        allele_counts=tuple(int(x) for x in d.get("allele_counts", (0, 0))),
        chrom=str(d.get("chrom", ".")),
        pos0=int(d.get("pos0", -1)),
        alleles=tuple(str(a) for a in d.get("alleles", ("0", "1"))),  # type: ignore[arg-type]
    )


def variant_to_dict(v: Variant) -> Dict[str, Any]:
    return {
        "index": v.index,
        "chrom": v.chrom,
        "pos0": v.pos0,
        "alleles": list(v.alleles),
        "genotype": list(v.genotype),
        "phase_set": v.phase_set,
        "allele_counts": list(v.allele_counts),
        "mec": v.mec,
        "mec_frac_variant": v.mec_frac_variant,
        "mec_frac_block": v.mec_frac_block,
    }


def load_fragments(path: str | Path) -> List[Fragment]:
    data = _read_json(path)
    if "fragments" not in data:
        raise ValueError(f"{path}: expected a JSON object with a 'fragments' list")
    fragments = [fragment_from_dict(d) for d in data["fragments"]]
    logger.info("Loaded %d fragments from %s", len(fragments), path)
    return fragments


def load_variants(path: str | Path) -> VarList:
    data = _read_json(path)
    if "variants" not in data:
        raise ValueError(f"{path}: expected a JSON object with a 'variants' list")
    varlist = VarList.from_variants([variant_from_dict(d) for d in data["variants"]])
    logger.info("Loaded %d variants from %s", len(varlist), path)
    return varlist


def save_fragments(fragments: List[Fragment], path: str | Path) -> Path:
    return _write_json(path, {"fragments": [fragment_to_dict(f) for f in fragments]})


def save_variants(varlist: VarList, path: str | Path) -> Path:
    return _write_json(path, {"variants": [variant_to_dict(v) for v in varlist]})
