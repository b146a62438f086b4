"""Tests for MCP tools, resources and prompts."""

import pkgutil
import threading
import time

import pytest

import neurolint_mcp
from neurolint_mcp.models import AnalysisResult, FixResult, SecurityScanResult
from neurolint_mcp.resources.resource_handlers import (
    get_config_resource,
    get_layers_resource,
    get_rules_resource,
)
from neurolint_mcp.tools import (
    analyze_code,
    cancel_job,
    clear_core_cache,
    fix_code,
    get_job_status,
    list_available_rules,
    list_jobs,
    list_layers,
    reset_jobs,
    scan_code,
    submit_job,
)
from neurolint_mcp.tools.jobs import stop_worker


@pytest.fixture(autouse=True)
def isolated_tools(rules_dir, monkeypatch):
    """Point the cached core at an empty rules directory and drop shared state."""
    (rules_dir / "config.yaml").write_text("jobs:\n  poll_interval_seconds: 0.01\n")
    monkeypatch.setenv("NEUROLINT_MCP_RULES_DIR", str(rules_dir))
    reset_jobs()
    clear_core_cache()
    yield
    reset_jobs()
    clear_core_cache()


def _wait_for(job_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        view = get_job_status(job_id)
        if view["status"] in ("completed", "failed", "cancelled"):
            return view
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


def test_analyze_code_returns_analysis_result():
    """analyze_code returns AnalysisResult with metadata."""
    result = analyze_code("console.log('x'); <img src='a'/>", layers=[2, 3])
    assert isinstance(result, AnalysisResult)
    assert result.summary.quality_score == 90
    assert result.metadata.filename == "unknown.tsx"


def test_analyze_code_empty():
    result = analyze_code("")
    assert result.summary.total_issues == 0
    assert result.issues == []


def test_scan_code():
    result = scan_code("eval(userInput)")
    assert isinstance(result, SecurityScanResult)
    assert result.risk_level == "critical"


def test_fix_code_returns_fix_result():
    result = fix_code("console.log('x');\nrun();\n", "a.ts", [2])
    assert isinstance(result, FixResult)
    assert result.code == "run();\n"
    assert result.original_code == "console.log('x');\nrun();\n"


def test_list_available_rules():
    rules = list_available_rules()
    assert len(rules) == 12
    assert {rule["id"] for rule in list_available_rules(4)} == {"ssr-localstorage", "ssr-window"}


def test_list_layers():
    layers = list_layers()
    assert len(layers) == 8
    assert layers[-1]["rule_count"] == 15


def test_resources_render():
    assert "`img-alt`" in get_rules_resource()
    assert "No rules registered" in get_rules_resource(layer=7)
    assert "Security Forensics" in get_layers_resource()
    config_text = get_config_resource()
    assert "Default layers: 1, 2, 3, 4, 5, 6, 7, 8" in config_text
    assert "store: in-memory" in config_text


def test_job_round_trip():
    submission = submit_job("console.log('x');\n", "a.ts", [2], apply_fixes=True)
    assert submission.estimated_wait == "1-2 minutes"

    view = _wait_for(submission.job_id)
    assert view["status"] == "completed"
    assert view["progress"] == 100
    assert view["result"]["transformed_code"] == ""
    assert [job["id"] for job in list_jobs()] == [submission.job_id]


def test_unknown_job():
    assert get_job_status("missing") is None
    assert cancel_job("missing") is False


def test_cancel_finished_job_is_refused():
    job_id = submit_job("const a = 1;\n", layers=[1]).job_id
    _wait_for(job_id)
    assert cancel_job(job_id) is False


def test_server_prompts():
    from neurolint_mcp import server

    review = server.code_review("console.log('x');", "a.tsx", [2])
    assert "console-statements" in review
    assert "**File:** a.tsx" in review

    suggestion = server.fix_suggestion("<img src='a'/>", "img-alt", "Image missing alt attribute", layer=3, line=1)
    assert "**Rule ID:** img-alt" in suggestion
    assert "**Layer:** 3" in suggestion


def test_every_subpackage_is_a_regular_package():
    names = {module.name for module in pkgutil.walk_packages(neurolint_mcp.__path__, "neurolint_mcp.")}
    assert {
        "neurolint_mcp.jobs",
        "neurolint_mcp.tools",
        "neurolint_mcp.resources",
        "neurolint_mcp.resources.resource_handlers",
        "neurolint_mcp.prompts",
        "neurolint_mcp.prompts.prompt_templates",
    } <= names


def test_stop_worker_ends_the_worker_thread():
    job_id = submit_job("console.log('x');\n", "a.ts", [2]).job_id
    assert _wait_for(job_id)["status"] == "completed"
    assert any(thread.name == "neurolint-job-worker" for thread in threading.enumerate())

    stop_worker()

    assert not any(thread.name == "neurolint-job-worker" for thread in threading.enumerate())
