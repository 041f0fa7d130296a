from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Sequence

import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def plot_posterior_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    title: str = "Posterior P(haplotype 0) distribution",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    widths = [bin_edges[i + 1] - bin_edges[i] for i in range(len(counts))]
    centers = [bin_edges[i] + widths[i] / 2.0 for i in range(len(counts))]

    plt.figure()
    plt.bar(centers, counts, width=widths, align="center")
    plt.xlabel("Posterior P(haplotype 0)")
    plt.ylabel("Fragment count")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_class_counts(
    *,
    class_counts: Dict[str, int],
    out_png: str | Path,
    title: str = "Haplotype assignments",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = ["Haplotype 0", "Haplotype 1", "Unassigned"]
    values = [
        int(class_counts.get("class_0", 0)),
        int(class_counts.get("class_1", 0)),
        int(class_counts.get("class_U", 0)),
    ]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Fragment count")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_block_mec(
    *,
    blocks: Sequence[Dict[str, object]],
    out_png: str | Path,
    title: str = "MEC fraction per phase block",
) -> None:
    """Bar per phase block; bar width is not scaled by block size."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = [str(b["phase_set"]) for b in blocks]
    fracs = [float(b["mec_frac"]) for b in blocks]

    plt.figure()
    plt.bar(range(len(labels)), fracs)
    plt.xlabel("Phase set")
    plt.ylabel("MEC / observed alleles")
    plt.title(title)
    if len(labels) <= 30:
        plt.xticks(range(len(labels)), labels, rotation=45, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_variant_mec_hist(
    *,
    mec_fracs: Sequence[float],
    out_png: str | Path,
    title: str = "Per-variant MEC fraction",
    nbins: int = 20,
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    plt.figure()
    plt.hist(list(mec_fracs), bins=nbins, range=(0.0, 1.0))
    plt.xlabel("MEC / observed alleles at variant")
    plt.ylabel("Phased variant count")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
