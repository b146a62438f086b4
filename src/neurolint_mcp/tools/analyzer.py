"""
Analysis tools exposed over MCP.

The tools share one cached :class:`NeuroLintCore`, built on first use from
the configuration in the rules directory.

Example:
    >>> result = analyze_code("console.log('x'); <img src='a'/>", layers=[2, 3])
    >>> result.summary.quality_score
    90
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from neurolint_mcp.core import NeuroLintCore
from neurolint_mcp.models import AnalysisResult, SecurityScanResult

logger = logging.getLogger(__name__)


# =============================================================================
# Global Core Cache
# =============================================================================


_cached_core: NeuroLintCore | None = None
_core_lock = threading.Lock()


def get_cached_core() -> NeuroLintCore:
    """
    Get or create the cached NeuroLintCore instance.

    Returns:
        Shared NeuroLintCore instance.
    """
    global _cached_core
    with _core_lock:
        if _cached_core is None:
            logger.info("Initializing cached NeuroLintCore instance")
            _cached_core = NeuroLintCore()
        return _cached_core


def clear_core_cache() -> None:
    """Drop the cached core so the next call reloads config and learned rules."""
    global _cached_core
    with _core_lock:
        _cached_core = None
        logger.info("NeuroLintCore cache cleared")


# =============================================================================
# Tools
# =============================================================================


def analyze_code(
    code: str,
    filename: Optional[str] = None,
    layers: Optional[list[int]] = None,
    verbose: bool = False,
) -> AnalysisResult:
    """
    Analyze a source buffer.

    Args:
        code: Source text.
        filename: Used for metadata and grammar selection.
        layers: Layers 1..8 to run; all configured layers when omitted.
        verbose: Log each issue.

    Returns:
        AnalysisResult with issues, summary, security section and metadata.
    """
    return get_cached_core().analyze(code, filename=filename, layers=layers, verbose=verbose)


def scan_code(code: str, filename: Optional[str] = None) -> SecurityScanResult:
    """Run the layer-8 security scanner alone."""
    return get_cached_core().scan_security(code, filename)


def list_available_rules(layer: Optional[int] = None) -> list[dict[str, Any]]:
    """Describe registered rules, optionally for one layer."""
    return get_cached_core().engine.list_rules(layer)


def list_layers() -> list[dict[str, Any]]:
    return get_cached_core().get_layer_info()
