from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>readphase report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>readphase report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      {% for key, value in inputs.items() %}
      <tr><th>{{ key }}</th><td><code>{{ value }}</code></td></tr>
      {% endfor %}
    </table>
  </div>
  <div class="card">
    <h3>Parameters</h3>
    <table>
      {% for key, value in params.items() %}
      <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
      {% endfor %}
    </table>
  </div>
</div>

{% if mec %}
<h2>Phasing quality (MEC)</h2>
<table>
  <tr><th>Variants</th><td>{{ mec.n_variants }}</td></tr>
  <tr><th>Phased variants</th><td>{{ mec.n_phased }}</td></tr>
  <tr><th>Unphased variants</th><td>{{ mec.n_unphased }}</td></tr>
  <tr><th>Phase blocks</th><td>{{ mec.n_blocks }}</td></tr>
  <tr><th>MEC (total)</th><td>{{ mec.mec_total }}</td></tr>
  <tr><th>Observed alleles in blocks</th><td>{{ mec.observations_total }}</td></tr>
  <tr><th>MEC fraction</th><td>{{ "%.4f"|format(mec.mec_frac) }}</td></tr>
</table>

<h3>Blocks</h3>
<table>
  <tr><th>Phase set</th><th>Variants</th><th>MEC</th><th>Observed alleles</th><th>MEC fraction</th></tr>
  {% for b in mec.blocks %}
  <tr><td>{{ b.phase_set }}</td><td>{{ b.n_variants }}</td><td>{{ b.mec }}</td><td>{{ b.total }}</td><td>{{ "%.4f"|format(b.mec_frac) }}</td></tr>
  {% endfor %}
</table>
{% endif %}

{% if counts %}
<h2>Haplotype assignments</h2>
<table>
  <tr><th>Fragments</th><td>{{ counts.fragments_total }}</td></tr>
  <tr><th>Haplotype 0</th><td>{{ counts.class_0 }}</td></tr>
  <tr><th>Haplotype 1</th><td>{{ counts.class_1 }}</td></tr>
  <tr><th>Unassigned</th><td>{{ counts.class_U }}</td></tr>
</table>
{% endif %}

{% if plots %}
<h2>Plots</h2>
<div class="grid">
  {% for name, src in plots.items() %}
  <div class="card">
    <h3>{{ name|replace("_", " ") }}</h3>
    <img src="{{ src }}" alt="{{ name }}">
  </div>
  {% endfor %}
</div>
{% endif %}

<h2>Interpretation notes</h2>
<ul>
  <li>MEC counts confident allele calls that disagree with the haplotype each fragment fits best.</li>
  <li>Low-confidence calls (miscall probability at or above the ceiling) are never counted as errors.</li>
  <li>When a fragment fits both haplotypes equally well its errors are charged against haplotype 0.</li>
</ul>

<hr>
<p class="small">readphase {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    inputs: Dict[str, Any],
    params: Dict[str, Any],
    mec: Optional[Dict[str, Any]] = None,
    counts: Optional[Dict[str, int]] = None,
    plots: Optional[Dict[str, str]] = None,
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        inputs=inputs,
        params=params,
        mec=mec,
        counts=counts,
        plots=plots or {},
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    logger.info("Report written: %s", out_path)
    return out_path
