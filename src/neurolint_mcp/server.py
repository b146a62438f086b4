"""NeuroLint MCP Server - Layered React/Next.js analysis and safe automatic repair."""

import json
import logging

from mcp.server.fastmcp import FastMCP

from neurolint_mcp.tools import (
    analyze_code,
    cancel_job,
    fix_code as run_fixes,
    get_job_status,
    list_available_rules,
    list_jobs,
    list_layers as layer_catalogue,
    scan_code,
    submit_job,
)
from neurolint_mcp.resources.resource_handlers import (
    get_config_resource,
    get_layers_resource,
    get_rules_resource,
)
from neurolint_mcp.prompts.prompt_templates import CODE_REVIEW_PROMPT, FIX_SUGGESTION_PROMPT

# ────────────────────────────────────────────
# LOGGING SETUP
# ────────────────────────────────────────────

logger = logging.getLogger("neurolint")

# ────────────────────────────────────────────
# SERVER INSTANTIATION
# ────────────────────────────────────────────

mcp = FastMCP(
    name="NeuroLint MCP",
    instructions="Multi-layer analysis and safe automatic repair for React / Next.js TypeScript and JavaScript. Detects configuration, pattern, component, hydration, Next.js, testing, learned and security issues; fixes are validated and reverted per layer if they would make the code worse.",
)

# ────────────────────────────────────────────
# TOOLS
# ────────────────────────────────────────────


@mcp.tool()
def analyze(
    code: str, filename: str | None = None, layers: list[int] | None = None, verbose: bool = False
) -> dict:
    """Analyze code across layers 1-8. Returns issues, quality and readiness scores, recommended layers, a security summary when layer 8 runs, and execution metadata."""
    result = analyze_code(code, filename, layers, verbose)
    logger.info(f"analyze: {len(result.issues)} issues")
    return result.model_dump(mode="json")


@mcp.tool()
def fix_code(code: str, filename: str | None = None, layers: list[int] | None = None) -> dict:
    """Apply fixes layer by layer. Each layer's rewrite is validated; a layer that would break parsing, exports or raise the issue count is reverted. Returns the code, applied fixes and a per-layer report."""
    result = run_fixes(code, filename, layers)
    logger.info(f"fix_code: {len(result.applied_fixes)} fixes applied")
    return result.model_dump(mode="json")


@mcp.tool()
def scan_security(code: str, filename: str | None = None) -> dict:
    """Scan code for indicators of compromise, backdoors, exfiltration, supply chain attacks and known CVEs. Detection only, nothing is rewritten."""
    result = scan_code(code, filename)
    logger.info(f"scan_security: {result.summary.total_threats} threats, risk {result.risk_level}")
    return result.model_dump(mode="json")


@mcp.tool()
def list_layers() -> list:
    """List the eight analysis layers with their rule counts."""
    return layer_catalogue()


@mcp.tool()
def list_rules(layer: int | None = None) -> list:
    """List registered rules. Optionally filter by layer (1-7)."""
    return list_available_rules(layer)


@mcp.tool()
def submit_analysis_job(
    code: str,
    filename: str | None = None,
    layers: list[int] | None = None,
    priority: str | None = None,
    apply_fixes: bool = False,
    project_id: str | None = None,
) -> dict:
    """Queue an asynchronous analysis. priority is one of low, normal, high, urgent and is capped by the account tier. Returns the job id and an estimated wait; poll with get_analysis_job."""
    submission = submit_job(code, filename, layers, priority, apply_fixes, project_id)
    logger.info(f"submit_analysis_job: {submission.job_id}")
    return submission.model_dump(mode="json")


@mcp.tool()
def get_analysis_job(job_id: str) -> dict:
    """Poll an analysis job: status, progress, result or error, and timestamps."""
    view = get_job_status(job_id)
    if view is None:
        return {"error": f"Job not found: {job_id}"}
    return view


@mcp.tool()
def cancel_analysis_job(job_id: str) -> dict:
    """Cancel a pending or processing job. Finished jobs cannot be cancelled."""
    cancelled = cancel_job(job_id)
    logger.info(f"cancel_analysis_job: {job_id} cancelled={cancelled}")
    return {"job_id": job_id, "cancelled": cancelled}


@mcp.tool()
def list_analysis_jobs(limit: int = 10) -> list:
    """List your most recent analysis jobs, newest first."""
    return list_jobs(limit)


# ────────────────────────────────────────────
# RESOURCES
# ────────────────────────────────────────────


@mcp.resource("neurolint://rules")
def rules_resource() -> str:
    """All registered rules across layers 1-7."""
    return get_rules_resource()


@mcp.resource("neurolint://layers")
def layers_resource() -> str:
    """The eight analysis layers."""
    return get_layers_resource()


@mcp.resource("neurolint://config")
def config_resource() -> str:
    """Active scoring, context window and job settings."""
    return get_config_resource()


# ────────────────────────────────────────────
# PROMPTS
# ────────────────────────────────────────────


@mcp.prompt()
def code_review(code: str, filename: str = "", layers: list[int] | None = None) -> str:
    """Analyze code and return a structured review prompt with all issues included."""
    result = analyze_code(code, filename or None, layers)
    analysis_text = (
        json.dumps([i.model_dump(mode="json") for i in result.issues], indent=2)
        if result.issues
        else "No issues."
    )
    logger.info(f"code_review prompt generated: {len(result.issues)} issues")
    return CODE_REVIEW_PROMPT.format(
        filename=filename or "<inline>",
        layers=", ".join(str(layer) for layer in result.metadata.layers_analyzed),
        quality_score=result.summary.quality_score,
        readiness_score=result.summary.readiness_score,
        code=code,
        analysis=analysis_text,
    )


@mcp.prompt()
def fix_suggestion(
    code: str,
    rule_id: str,
    message: str,
    layer: int | None = None,
    filename: str = "",
    line: int | None = None,
) -> str:
    """Generate a targeted fix suggestion prompt for a specific issue."""
    logger.info(f"fix_suggestion prompt: rule={rule_id}, line={line}")
    return FIX_SUGGESTION_PROMPT.format(
        rule_id=rule_id,
        layer=layer or "?",
        message=message,
        filename=filename or "<unknown>",
        line=line or "?",
        code=code,
    )


# ────────────────────────────────────────────
# ENTRY POINT
# ────────────────────────────────────────────


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    logger.info("Starting NeuroLint MCP server...")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
