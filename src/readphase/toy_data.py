from __future__ import annotations

import math
import random
from pathlib import Path
from typing import Dict, List, Tuple

import pysam

from .mec import count_alleles
from .models import Call, Fragment, Variant, VarList
from .tables import save_fragments, save_variants
from .utils import ensure_outdir, write_json


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _mutate_base(base: str) -> str:
    for alt in ["A", "C", "G", "T"]:
        if alt != base:
            return alt
    return "A"


def _make_read(
    name: str,
    start0: int,
    seq: str,
    mapq: int = 60,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = 0
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    return a


def _read_log_evidence(calls: List[Call], hap_alleles: List[int]) -> float:
    """log P(read | haplotype) under independent per-call miscall probabilities."""
    total = 0.0
    for c in calls:
        p_err = math.exp(c.quality)
        if c.allele == hap_alleles[c.variant_index]:
            total += math.log1p(-p_err)
        else:
            total += c.quality
    return total


def make_toy_data(
    *,
    outdir: str | Path,
    n_variants: int = 30,
    n_fragments: int = 80,
    spacing: int = 100,
    read_span: Tuple[int, int] = (3, 8),
    error_rate: float = 0.03,
    seed: int = 7,
) -> Dict[str, str]:
    """Create a small two-haplotype dataset for demos/tests.

    The outputs include:
    - toy_ref.fa (+ .fai)
    - variants.json (unphased genotypes and allele counts)
    - fragments.json (allele calls and per-haplotype read evidence)
    - reads.bam (+ .bai), one read per fragment, named by fragment id
    - truth.json (the simulated haplotype-0 alleles)

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(seed)

    contig = "chr1"
    ref_len = spacing * (n_variants + 1)
    ref_seq = "".join(rng.choice("ACGT") for _ in range(ref_len))
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, contig, ref_seq)
    pysam.faidx(str(ref_fa))

    variants: List[Variant] = []
    hap0: List[int] = []
    for i in range(n_variants):
        pos0 = spacing // 2 + i * spacing
        ref_base = ref_seq[pos0]
        alt_base = _mutate_base(ref_base)
        # every 10th site is homozygous ALT and never phased
        if i % 10 == 9:
            genotype = (1, 1)
            hap0.append(1)
        else:
            genotype = (0, 1)
            hap0.append(rng.randint(0, 1))
        variants.append(
            Variant(index=i, genotype=genotype, chrom=contig, pos0=pos0, alleles=(ref_base, alt_base))
        )
    hap1 = [1 - a if variants[i].is_heterozygous else a for i, a in enumerate(hap0)]
    haps = (hap0, hap1)

    fragments: List[Fragment] = []
    reads: List[pysam.AlignedSegment] = []
    quals = [0.001, 0.01, 0.02, 0.05, 0.3]
    for k in range(n_fragments):
        h = k % 2
        span = rng.randint(read_span[0], read_span[1])
        if k * read_span[0] < n_variants:
            # leading fragments tile the variants so every site has coverage
            first = max(0, min(k * read_span[0], n_variants - span))
        else:
            first = rng.randint(0, max(0, n_variants - span))
        calls: List[Call] = []
        for ix in range(first, min(n_variants, first + span)):
            allele = haps[h][ix]
            if rng.random() < error_rate:
                allele = 1 - allele
            calls.append(Call(variant_index=ix, allele=allele, quality=math.log(rng.choice(quals))))

        fid = f"frag{k:04d}"
        fragments.append(
            Fragment(
                id=fid,
                calls=tuple(calls),
                p_read_hap=(_read_log_evidence(calls, hap0), _read_log_evidence(calls, hap1)),
            )
        )

        start0 = variants[calls[0].variant_index].pos0 - spacing // 2
        end0 = variants[calls[-1].variant_index].pos0 + spacing // 2
        seq = list(ref_seq[start0:end0])
        for c in calls:
            var = variants[c.variant_index]
            seq[var.pos0 - start0] = var.alleles[c.allele]
        reads.append(_make_read(fid, start0, "".join(seq)))

    for var, counts in zip(variants, count_alleles(fragments, n_variants)):
        var.allele_counts = counts
    varlist = VarList.from_variants(variants)

    bam_path = outdir_p / "reads.bam"
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": contig, "LN": len(ref_seq)}],
    }
    reads.sort(key=lambda r: r.reference_start)
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)
    pysam.index(str(bam_path))

    fragments_path = save_fragments(fragments, outdir_p / "fragments.json")
    variants_path = save_variants(varlist, outdir_p / "variants.json")
    truth_path = outdir_p / "truth.json"
    write_json(truth_path, {"hap0": hap0, "hap1": hap1})

    summary = {
        "ref_fa": str(ref_fa),
        "reads_bam": str(bam_path),
        "fragments": str(fragments_path),
        "variants": str(variants_path),
        "truth": str(truth_path),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
