from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple


class PhasingDataError(ValueError):
    """Base class for data-consistency failures in the phasing engine."""


class InvalidVariantIndexError(PhasingDataError, IndexError):
    """A call references a variant index outside the variant table."""


@dataclass(frozen=True)
class Call:
    """One observed allele at one variant site within one fragment.

    Attributes
    ----------
    variant_index:
        0-based index into the ordered variant table.
    allele:
        Observed allele (0 or 1).
    quality:
        Natural-log probability that this call is a miscall (<= 0).
    """

    variant_index: int
    allele: int
    quality: float


@dataclass(frozen=True)
class Fragment:
    """One sequencing read (or read pair) with its allele calls.

    ``calls`` are ordered by non-decreasing ``variant_index``.
    ``p_read_hap`` holds unnormalized log-evidence that the whole fragment
    was drawn from haplotype 0 and haplotype 1.
    """

    id: str
    calls: Tuple[Call, ...]
    p_read_hap: Tuple[float, float] = (0.0, 0.0)


@dataclass
class Variant:
    """One genomic site under phasing.

    ``genotype`` is (haplotype-0 allele, haplotype-1 allele). ``phase_set`` is
    None for unphased variants. The ``mec*`` fields are owned by
    :func:`readphase.mec.calculate_mec` and recomputed on every call.
    """

    index: int
    genotype: Tuple[int, int] = (0, 1)
    phase_set: Optional[int] = None
    allele_counts: Tuple[int, ...] = (0, 0)
    chrom: str = "."
    pos0: int = -1
    alleles: Tuple[str, str] = ("0", "1")
    mec: int = 0
    mec_frac_variant: float = 0.0
    mec_frac_block: float = 0.0

    @property
    def total_alleles(self) -> int:
        return int(sum(self.allele_counts))

    @property
    def is_heterozygous(self) -> bool:
        return self.genotype[0] != self.genotype[1]


@dataclass
class VarList:
    """Ordered variant table; the only entry point for variant lookups by index."""

    lst: List[Variant] = field(default_factory=list)

    @classmethod
    def from_variants(cls, variants: Sequence[Variant]) -> "VarList":
        lst = list(variants)
        for i, var in enumerate(lst):
            if var.index != i:
                raise PhasingDataError(
                    f"Variant at position {i} carries index {var.index}; "
                    "variant tables must be ordered by index starting at 0."
                )
        return cls(lst=lst)

    def __len__(self) -> int:
        return len(self.lst)

    def __iter__(self) -> Iterator[Variant]:
        return iter(self.lst)

    def get(self, ix: int) -> Variant:
        """Bounds-checked access; negative indices are errors, not wraparound."""
        if not 0 <= ix < len(self.lst):
            raise InvalidVariantIndexError(
                f"Variant index {ix} is outside the variant table (size {len(self.lst)})."
            )
        return self.lst[ix]

    def phased(self) -> Iterator[Variant]:
        return (v for v in self.lst if v.phase_set is not None)

    def phase_sets(self) -> List[int]:
        """Distinct phase-set ids in order of first appearance."""
        seen: Dict[int, None] = {}
        for v in self.lst:
            if v.phase_set is not None:
                seen.setdefault(v.phase_set, None)
        return list(seen)


def check_variant_index(ix: int, n_variants: int) -> int:
    if not 0 <= ix < n_variants:
        raise InvalidVariantIndexError(
            f"Variant index {ix} is outside the variant table (size {n_variants})."
        )
    return ix


@dataclass(frozen=True)
class HaplotypeAssignment:
    """Per-fragment haplotype-of-origin result."""

    fragment_id: str
    n_calls: int
    p_hap0: float  # normalized log-probability
    p_hap1: float
    cls: str  # '0', '1', or 'U'
