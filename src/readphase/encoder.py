"""Serialization of fragments and variants into the phasing solver's input format.

Fragment records follow the HapCUT2 fragment-file grammar::

    <n_blocks> <fragment_id> <ix> <alleles> [<ix> <alleles> ...] <qualities>

where ``<ix>`` is the 1-based index of the first variant in a run of
consecutive variants and ``<alleles>`` the concatenated allele digits of that
run. ``<qualities>`` holds one PHRED+33 byte per emitted allele. Records in a
buffer are NUL-terminated; :func:`write_buffer` writes them one per line.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .models import Fragment, PhasingDataError, VarList, check_variant_index
from .utils import log_prob, quality_byte

logger = logging.getLogger(__name__)


class FragmentEncodingError(PhasingDataError):
    """A fragment cannot be represented in the solver's text format."""


def _check_fragment_id(frag_id: str) -> bytes:
    if not frag_id or any(ch.isspace() or ch == "\0" for ch in frag_id):
        raise FragmentEncodingError(
            f"Fragment id {frag_id!r} is empty or contains whitespace/NUL; "
            "it cannot be written as a solver record."
        )
    return frag_id.encode("utf-8")


def _qualifying_calls(fragment: Fragment, phase_variant: Sequence[bool], ln_max_p_miscall: float):
    n_variants = len(phase_variant)
    for call in fragment.calls:
        check_variant_index(call.variant_index, n_variants)
        if phase_variant[call.variant_index] and call.quality < ln_max_p_miscall:
            yield call


def encode_fragment(
    fragment: Fragment,
    phase_variant: Sequence[bool],
    ln_max_p_miscall: float,
) -> Optional[bytes]:
    """Encode one fragment, or return None if it has fewer than 2 qualifying calls."""
    calls = list(_qualifying_calls(fragment, phase_variant, ln_max_p_miscall))
    if len(calls) < 2:
        return None

    blocks = 0
    prev: Optional[int] = None
    body = bytearray()
    quals = bytearray()
    for call in calls:
        if call.allele not in (0, 1):
            raise FragmentEncodingError(
                f"Fragment {fragment.id!r} has allele {call.allele!r} at variant "
                f"{call.variant_index}; only 0/1 can be encoded."
            )
        if prev is not None and call.variant_index == prev + 1:
            body += str(call.allele).encode("ascii")
        else:
            blocks += 1
            body += f" {call.variant_index + 1} {call.allele}".encode("ascii")
        quals.append(quality_byte(call.quality))
        prev = call.variant_index

    line = bytearray(str(blocks).encode("ascii"))
    line += b" " + _check_fragment_id(fragment.id)
    line += body
    line += b" " + bytes(quals) + b"\0"
    return bytes(line)


def generate_flist_buffer(
    fragments: Iterable[Fragment],
    phase_variant: Sequence[bool],
    max_p_miscall: float,
) -> List[bytes]:
    """Encode fragments for the solver; fragments with <2 qualifying calls are omitted."""
    ln_max_p_miscall = log_prob(max_p_miscall)

    buffer: List[bytes] = []
    skipped = 0
    for frag in fragments:
        rec = encode_fragment(frag, phase_variant, ln_max_p_miscall)
        if rec is None:
            skipped += 1
            continue
        buffer.append(rec)

    logger.info("Encoded %d fragments for phasing (%d skipped with <2 usable calls)", len(buffer), skipped)
    return buffer


def phase_variant_mask(varlist: VarList) -> List[bool]:
    """Default mask: every heterozygous variant takes part in phasing."""
    return [v.is_heterozygous for v in varlist]


def generate_variant_buffer(varlist: VarList, phase_variant: Sequence[bool]) -> List[bytes]:
    """One NUL-terminated VCF-style record per variant.

    Variants outside ``phase_variant`` are written homozygous so the solver
    leaves them out of every block.
    """
    if len(phase_variant) != len(varlist):
        raise PhasingDataError(
            f"phase_variant has {len(phase_variant)} entries for {len(varlist)} variants"
        )

    buffer: List[bytes] = []
    for var, use in zip(varlist, phase_variant):
        g0, g1 = var.genotype
        gt = f"{g0}/{g1}" if use else f"{g0}/{g0}"
        ref, alt = var.alleles
        line = f"{var.chrom}\t{var.pos0 + 1}\t.\t{ref}\t{alt}\t.\tPASS\t.\tGT\t{gt}\0"
        buffer.append(line.encode("utf-8"))
    return buffer


def write_buffer(records: Iterable[bytes], path: str | Path) -> Path:
    """Write NUL-terminated records as newline-terminated lines."""
    path = Path(path)
    with open(path, "wb") as fh:
        for rec in records:
            fh.write(rec.rstrip(b"\0") + b"\n")
    return path
