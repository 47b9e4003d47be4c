"""Unit tests for the Markdown job summary."""

from drifthound_action.checks import RunResults, ScopeResult, ScopeStatus
from drifthound_action.summary import render_summary, write_summary


def _results(*scope_results):
    results = RunResults()
    for r in scope_results:
        results.record(r)
    return results


class TestRenderSummary:
    def test_no_scopes(self):
        assert "No scopes were checked." in render_summary(RunResults())

    def test_clean_run(self):
        text = render_summary(_results(ScopeResult(name="core-prod", status=ScopeStatus.OK, duration=12)))
        assert "No drift detected in 1 scope(s)." in text
        assert "| `core-prod` |" in text
        assert " ok | 0 | 0 | 0 | 12s |" in text

    def test_drift(self):
        text = render_summary(
            _results(
                ScopeResult(name="a", status=ScopeStatus.DRIFT, add_count=1, change_count=2, destroy_count=3),
                ScopeResult(name="b", status=ScopeStatus.OK),
            )
        )
        assert "Drift detected in 1 of 2 scope(s)." in text
        assert " drift | 1 | 2 | 3 | 0s |" in text

    def test_errors_listed(self):
        text = render_summary(
            _results(ScopeResult(name="gone", status=ScopeStatus.ERROR, error="Directory not found: ./gone"))
        )
        assert "1 scope(s) failed" in text
        assert "- `gone`: Directory not found: ./gone" in text


class TestWriteSummary:
    def test_appends(self, tmp_path):
        target = tmp_path / "summary.md"
        target.write_text("# Earlier step\n")
        write_summary(_results(ScopeResult(name="a", status=ScopeStatus.OK)), target)
        content = target.read_text()
        assert content.startswith("# Earlier step\n")
        assert "DriftHound drift check" in content
