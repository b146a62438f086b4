"""
Fix tool: rewrites a buffer through the transform safety protocol.

The returned code is either the input unchanged or a rewrite that passed
validation for every layer it touched.
"""

from __future__ import annotations

import logging
from typing import Optional

from neurolint_mcp.models import FixResult
from neurolint_mcp.tools.analyzer import get_cached_core

logger = logging.getLogger(__name__)


def fix_code(
    code: str,
    filename: Optional[str] = None,
    layers: Optional[list[int]] = None,
) -> FixResult:
    """
    Apply fixes for the requested layers.

    Args:
        code: Source text.
        filename: Picks the grammar (``.json``, ``.ts``, ``.js``, ``.tsx``).
        layers: Layers to run; all configured layers when omitted.

    Returns:
        FixResult with the rewritten code, applied fixes and a report per layer.
    """
    result = get_cached_core().apply_fixes(code, filename=filename, layers=layers)
    reverted = [report.layer_id for report in result.layers if report.status == "reverted"]
    if reverted:
        logger.info(f"fix_code: layers {reverted} were reverted", extra={"source_file": filename})
    return result
