from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>linkedmut Report</title>
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

<h1>linkedmut Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>Alignments</th><td><code>{{ bam_path }}</code></td></tr>
      <tr><th>Positions</th><td><code>{{ positions_path }}</code></td></tr>
      <tr><th>Positions loaded</th><td>{{ n_positions }}</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Settings</h3>
    <table>
      <tr><th>Min baseQ</th><td>{{ min_baseq }}</td></tr>
      <tr><th>Min MAPQ</th><td>{{ min_mapq }}</td></tr>
      <tr><th>Output layout</th><td>{{ layout }}</td></tr>
      <tr><th>Worker processes</th><td>{{ threads }}</td></tr>
    </table>
  </div>
</div>

<h2>Reads</h2>
<table>
  <tr><th>Total records seen</th><td>{{ counts.reads_total }}</td></tr>
  <tr><th>Unmapped skipped</th><td>{{ counts.reads_unmapped }}</td></tr>
  <tr><th>Duplicates skipped</th><td>{{ counts.reads_skipped_duplicates }}</td></tr>
  <tr><th>Secondary skipped</th><td>{{ counts.reads_skipped_secondary }}</td></tr>
  <tr><th>Supplementary skipped</th><td>{{ counts.reads_skipped_supplementary }}</td></tr>
  <tr><th>Low MAPQ skipped</th><td>{{ counts.reads_skipped_mapq }}</td></tr>
  <tr><th>CIGAR anomalies skipped</th><td>{{ counts.coordinate_anomalies }}</td></tr>
  <tr><th>Reads overlapping no position</th><td>{{ counts.reads_no_overlap }}</td></tr>
  <tr><th>Linkage rows written</th><td>{{ counts.reads_linked }}</td></tr>
</table>

{% if reference_mismatches %}
<h2>Reference check</h2>
<table>
  <tr><th>Label</th><th>Region</th><th>Wildtype</th><th>Reference</th><th>Issue</th></tr>
  {% for m in reference_mismatches %}
  <tr><td>{{ m.label }}</td><td>{{ m.reference_name }}:{{ m.start }}-{{ m.end }}</td>
      <td><code>{{ m.wildtype }}</code></td><td><code>{{ m.reference }}</code></td><td>{{ m.reason }}</td></tr>
  {% endfor %}
</table>
{% endif %}

<h2>Top linkage patterns</h2>
<table>
  <tr><th>Positions</th><th>Pattern</th><th>Reads</th></tr>
  {% for group, pattern, n in top_patterns %}
  <tr><td><code>{{ group }}</code></td><td><code>{{ pattern }}</code></td><td>{{ n }}</td></tr>
  {% endfor %}
</table>

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Linkage patterns</h3>
    <img src="{{ plots.pattern_counts }}" alt="pattern counts">
  </div>
  <div class="card">
    <h3>Calls per position</h3>
    <img src="{{ plots.outcome_counts }}" alt="outcome counts">
  </div>
</div>
<div class="grid" style="margin-top:16px;">
  <div class="card">
    <h3>Positions per read</h3>
    <img src="{{ plots.positions_per_read }}" alt="positions per read">
  </div>
</div>

<h2>Interpretation notes</h2>
<ul>
  <li><code>WT</code> wildtype, <code>M0</code>, <code>M1</code>, ... mutant allele by declared order,
      <code>AMB</code> sequenced but unresolved (deletion, insertion inside the span, low quality,
      or an unexpected base), <code>NC</code> not covered by the aligned part of the read.</li>
  <li>Patterns list calls in ascending position order and are only comparable between reads
      overlapping the same positions (the <em>Positions</em> column).</li>
</ul>

<hr>
<p class="small">linkedmut {{ version }}</p>
</body>
</html>"""
)


def top_patterns(pattern_counts: Dict[str, Dict[str, int]], n: int = 25) -> List[Tuple[str, str, int]]:
    flat = [
        (group, pattern, int(count))
        for group, patterns in pattern_counts.items()
        for pattern, count in patterns.items()
    ]
    flat.sort(key=lambda t: (-t[2], t[0], t[1]))
    return flat[:n]


def render_report(
    *,
    out_path: str | Path,
    version: str,
    run: Dict[str, Any],
    positions_path: str,
    plots: Dict[str, str],
    reference_mismatches: Optional[List[Dict[str, object]]] = None,
) -> Path:
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        bam_path=run.get("bam_path"),
        positions_path=positions_path,
        n_positions=run.get("n_positions"),
        min_baseq=run.get("min_baseq"),
        min_mapq=run.get("min_mapq"),
        layout=run.get("layout"),
        threads=run.get("threads"),
        counts=run.get("counts", {}),
        top_patterns=top_patterns(run.get("pattern_counts", {})),
        reference_mismatches=reference_mismatches or [],
        plots=plots,
    )

    out_path.write_text(html, encoding="utf-8")
    return out_path
