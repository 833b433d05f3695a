"""
Executive summary rendering.

Writes artifacts/experiments/<experiment_id>/exec_summary.html (Jinja2) and
analysis.json from an ExperimentAnalysis dict.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict

from jinja2 import Environment, select_autoescape

from .config import DEFAULT_ARTIFACTS_DIR

logger = logging.getLogger(__name__)

_env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))

EXEC_SUMMARY_TEMPLATE = _env.from_string("""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>A/B test {{ analysis.experiment_id }}</title>
<style>
  body { font-family: Helvetica, Arial, sans-serif; margin: 32px; color: #1b2631; }
  table { border-collapse: collapse; margin-top: 16px; }
  th, td { border: 1px solid #d5d8dc; padding: 6px 12px; text-align: right; }
  th:first-child, td:first-child { text-align: left; }
  .ship { background: #d5f5e3; } .hold { background: #fdebd0; } .iterate { background: #ebf5fb; }
  .box { padding: 12px; border-radius: 6px; margin: 16px 0; }
</style>
</head>
<body>
<h1>{{ title }}</h1>
<p>Primary metric: <strong>{{ analysis.primary_metric }}</strong>,
confidence level {{ "%.0f"|format(analysis.confidence_level * 100) }}%.
Generated {{ analysis.analysis_timestamp }}.</p>

<div class="box {{ analysis.recommendation }}">
  <strong>{{ analysis.recommendation|upper }}</strong>: {{ analysis.recommendation_reason }}
</div>

<table>
  <tr>
    <th>Variant</th><th>Participants</th><th>Conversions</th><th>Rate</th>
    <th>CI</th><th>Uplift</th><th>p-value</th><th>Significant</th>
  </tr>
  {% for r in analysis.results %}
  <tr>
    <td>{{ r.variant_id }}{% if loop.first %} (control){% endif %}</td>
    <td>{{ r.sample_size }}</td>
    <td>{{ r.conversions }}</td>
    <td>{{ "%.2f"|format(r.conversion_rate * 100) }}%</td>
    <td>[{{ "%.2f"|format(r.confidence_interval.lower * 100) }}%, {{ "%.2f"|format(r.confidence_interval.upper * 100) }}%]</td>
    <td>{{ "%+.1f"|format(r.uplift) }}%</td>
    <td>{{ "%.4f"|format(r.p_value) }}</td>
    <td>{{ "yes" if r.statistical_significance else "no" }}</td>
  </tr>
  {% endfor %}
</table>

<h2>Checks</h2>
<ul>
  <li>Sample ratio: {{ "pass" if analysis.srm_passed else "FAIL" }}
    {% if analysis.srm_p_value is not none %}(p = {{ "%.4f"|format(analysis.srm_p_value) }}){% endif %}</li>
  <li>Required sample per variant:
    {{ analysis.required_sample_size if analysis.required_sample_size is not none else "unknown (no control conversions)" }}
    ({{ "reached" if analysis.sample_size_adequate else "not reached" }})</li>
</ul>
</body>
</html>
""")


def render_exec_summary(
    analysis: Dict[str, Any],
    experiment_id: str,
    artifacts_dir: str = DEFAULT_ARTIFACTS_DIR,
    title: str = "",
) -> Path:
    """
    Render the HTML executive summary and save analysis.json next to it.

    Args:
        analysis: ExperimentAnalysis.to_dict()
        experiment_id: Experiment identifier
        artifacts_dir: Base artifacts directory
        title: Page heading (defaults to the experiment id)

    Returns:
        Path of exec_summary.html
    """
    out_dir = Path(artifacts_dir) / experiment_id
    out_dir.mkdir(parents=True, exist_ok=True)

    with open(out_dir / "analysis.json", "w") as f:
        json.dump(analysis, f, indent=2)

    html = EXEC_SUMMARY_TEMPLATE.render(
        analysis=analysis,
        title=title or f"A/B test {experiment_id}",
    )
    out_path = out_dir / "exec_summary.html"
    out_path.write_text(html, encoding="utf-8")
    logger.info(f"Executive summary written to {out_path}")
    return out_path
