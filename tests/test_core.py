"""Tests for the NeuroLint core facade."""

import json
import logging

from neurolint_mcp import __version__
from neurolint_mcp.config import ALL_LAYERS


def test_eval_example_is_critical(core):
    """eval on user input is a critical code injection finding."""
    result = core.analyze("eval(userInput)", layers=[8])

    assert len(result.issues) == 1
    issue = result.issues[0]
    assert issue.layer == 8
    assert issue.severity == "error"
    assert issue.category == "Code Injection"
    assert result.security is not None
    assert result.security.risk_level == "critical"
    assert result.security.threats == 1
    assert result.security.compromise_indicators == 1
    assert result.summary.issues_by_layer == {8: 1}
    assert result.summary.quality_score == 90


def test_console_and_img_example(core):
    result = core.analyze("console.log('x'); <img src='a'/>", layers=[2, 3])
    assert result.summary.quality_score == 90
    assert result.summary.issues_by_severity["warning"] == 2
    assert result.security is None


def test_default_layers_and_metadata(core):
    result = core.analyze("export const a = 1;\n")
    assert result.metadata.layers_analyzed == list(ALL_LAYERS)
    assert result.metadata.filename == "unknown.tsx"
    assert result.metadata.execution_time_ms >= 0
    assert result.security.risk_level == "clean"


def test_unknown_layers_are_ignored(core):
    assert core.resolve_layers([2, 9, 0, 2]) == [2]
    result = core.analyze("console.log(1);", layers=[2, 42])
    assert result.metadata.layers_analyzed == [2]


def test_security_findings_counted_in_summary(core):
    code = "console.log(token);\neval(token);\n"
    result = core.analyze(code, "a.ts", layers=[2, 8])
    assert result.summary.total_issues == 2
    assert result.summary.issues_by_layer == {2: 1, 8: 1}
    assert result.summary.quality_score == 85
    assert result.summary.recommended_layers == [2, 8]


def test_layer_info(core):
    info = core.get_layer_info()
    assert [layer["id"] for layer in info] == list(ALL_LAYERS)
    by_id = {layer["id"]: layer for layer in info}
    assert by_id[1]["rule_count"] == 3
    assert by_id[7]["rule_count"] == 0
    assert by_id[8]["rule_count"] == 15
    assert by_id[8]["name"] == "Security Forensics"


def test_version(core):
    assert core.version == __version__


def test_fix_tsconfig(core):
    code = json.dumps({"compilerOptions": {"strict": False}}, indent=2) + "\n"
    result = core.apply_fixes(code, "tsconfig.json")

    assert result.success
    assert json.loads(result.code) == {"compilerOptions": {"strict": True}}
    statuses = {report.layer_id: report.status for report in result.layers}
    assert statuses[1] == "accepted"
    assert all(status == "unchanged" for layer, status in statuses.items() if layer != 1)


def test_fix_does_not_touch_security_findings(core):
    code = "eval(userInput);\n"
    result = core.apply_fixes(code, "a.ts", layers=[8])
    assert result.code == code
    assert result.layers[0].status == "unchanged"


def test_analysis_is_idempotent(core):
    code = (
        "console.log('render');\n"
        "const saved = localStorage.getItem('k');\n"
        "eval(userInput);\n"
        "export default function Card() {\n"
        "  return <div>&quot;Hi&quot;<img src=\"c.png\" /></div>;\n"
        "}\n"
    )
    first = core.analyze(code, "card.tsx", layers=list(ALL_LAYERS))
    second = core.analyze(code, "card.tsx", layers=list(ALL_LAYERS))

    assert {issue.layer for issue in first.issues} >= {2, 3, 4, 8}
    assert second.issues == first.issues
    assert second.summary == first.summary
    assert second.security == first.security


def test_analyze_and_fix_with_info_logging(core, caplog):
    caplog.set_level(logging.DEBUG, logger="neurolint_mcp")
    analysis = core.analyze("export const a = 1;\nconsole.log(a);\n", "a.ts", layers=[2, 8])
    fixed = core.apply_fixes("export const a = 1;\nconsole.log(a);\n", "a.ts", layers=[2])

    assert analysis.summary.total_issues == 1
    assert fixed.code == "export const a = 1;\n"
    assert any(getattr(record, "source_file", None) == "a.ts" for record in caplog.records)
