"""readphase: read-to-haplotype consistency and phasing-quality engine.

Public API is intentionally small; most users should use the CLI:

    readphase phase --fragments ... --variants ... --outdir ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
