"""Render aggregated drift results as a Markdown job summary."""

from __future__ import annotations

from pathlib import Path

import jinja2

from drifthound_action.checks import RunResults, ScopeStatus

STATUS_ICONS = {
    ScopeStatus.OK: "✅",
    ScopeStatus.DRIFT: "⚠️",
    ScopeStatus.ERROR: "❌",
    ScopeStatus.UNKNOWN: "❔",
}

JOB_SUMMARY_TMPL = """
## DriftHound drift check

{% if not results.scopes -%}
No scopes were checked.
{% elif results.drift_detected -%}
Drift detected in {{ results.scopes_with_drift }} of {{ results.scopes_run }} scope(s).
{% elif errors -%}
No drift detected, but {{ errors }} scope(s) failed. See logs.
{% else -%}
No drift detected in {{ results.scopes_run }} scope(s).
{% endif %}
{% if results.scopes -%}
| Scope | Status | Add | Change | Destroy | Duration |
|-------|--------|----:|-------:|--------:|---------:|
{% for s in results.scopes -%}
| `{{ s.name }}` | {{ icons[s.status] }} {{ s.status.value }} | {{ s.add_count }} | {{ s.change_count }} | {{ s.destroy_count }} | {{ s.duration }}s |
{% endfor %}
{% endif -%}
{% if failures -%}

<details>
<summary>Errors</summary>

{% for s in failures -%}
- `{{ s.name }}`: {{ s.error }}
{% endfor %}
</details>
{% endif -%}
"""


def render_summary(results: RunResults) -> str:
    template = jinja2.Template(JOB_SUMMARY_TMPL)
    return template.render(
        results=results,
        icons=STATUS_ICONS,
        errors=sum(1 for s in results.scopes if s.status is ScopeStatus.ERROR),
        failures=[s for s in results.scopes if s.error],
    ).lstrip()


def write_summary(results: RunResults, output: Path) -> None:
    """Append the rendered summary, as GitHub expects for $GITHUB_STEP_SUMMARY."""
    with output.open("a", encoding="utf-8") as fh:
        fh.write(render_summary(results))
