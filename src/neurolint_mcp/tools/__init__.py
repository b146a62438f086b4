"""MCP tools for analysis, fixing, security scanning and asynchronous jobs."""

from neurolint_mcp.tools.analyzer import (
    analyze_code,
    clear_core_cache,
    get_cached_core,
    list_available_rules,
    list_layers,
    scan_code,
)
from neurolint_mcp.tools.fixer import fix_code
from neurolint_mcp.tools.jobs import (
    cancel_job,
    get_job_status,
    list_jobs,
    reset_jobs,
    submit_job,
)

__all__ = [
    "analyze_code",
    "cancel_job",
    "clear_core_cache",
    "fix_code",
    "get_cached_core",
    "get_job_status",
    "list_available_rules",
    "list_jobs",
    "list_layers",
    "reset_jobs",
    "scan_code",
    "submit_job",
]
