"""
NeuroLint core facade.

Ties the rule engine, the security scanner and the transform safety
protocol together behind one constructible object. The facade keeps no
per-call state, so one instance can serve concurrent callers.

Example:
    >>> core = NeuroLintCore()
    >>> result = core.analyze("eval(userInput)", layers=[8])
    >>> result.security.risk_level
    'critical'
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from typing import Any, Optional

from neurolint_mcp import __version__
from neurolint_mcp.config import ALL_LAYERS, SECURITY_LAYER, NeuroLintConfig, load_config
from neurolint_mcp.models import (
    AnalysisMetadata,
    AnalysisResult,
    FixResult,
    SecurityScanResult,
    SecuritySummary,
    ThreatType,
)
from neurolint_mcp.rules_engine import RuleEngine
from neurolint_mcp.safety import LayerCallback, ShouldContinue, TransformSafetyProtocol
from neurolint_mcp.security_scanner import SecurityScanner

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "unknown.tsx"

LAYER_INFO: tuple[dict[str, Any], ...] = (
    {"id": 1, "name": "Configuration", "description": "Updates tsconfig.json, next.config.js, package.json"},
    {"id": 2, "name": "Patterns", "description": "Removes console statements, converts HTML entities"},
    {"id": 3, "name": "Components", "description": "Adds list keys and accessibility attributes"},
    {"id": 4, "name": "Hydration", "description": "Guards client-side APIs for SSR safety"},
    {"id": 5, "name": "Next.js", "description": "Adds use client directives, migrates forwardRef for React 19"},
    {"id": 6, "name": "Testing", "description": "Flags pages and layouts without error boundaries"},
    {"id": 7, "name": "Adaptive", "description": "Applies learned patterns from the rules directory"},
    {"id": 8, "name": "Security Forensics", "description": "Detects IoCs, supply chain attacks, CVE vulnerabilities"},
)


class NeuroLintCore:
    """
    Analysis, fixing and security scanning for one configuration.

    Attributes:
        config: Active configuration.
        engine: Rule engine for layers 1-7.
        scanner: Security scanner for layer 8.
        protocol: Transform safety protocol used by ``apply_fixes``.
    """

    def __init__(
        self,
        config: NeuroLintConfig | None = None,
        engine: RuleEngine | None = None,
        scanner: SecurityScanner | None = None,
    ):
        self.config = config or (engine.config if engine is not None else load_config())
        self.engine = engine or RuleEngine(self.config, rules_dir=self.config.rules_dir)
        self.scanner = scanner or SecurityScanner()
        self.protocol = TransformSafetyProtocol(self.engine)

    @property
    def version(self) -> str:
        return __version__

    def resolve_layers(self, layers: Optional[Iterable[int]]) -> list[int]:
        """Requested layers restricted to 1..8, or the configured defaults."""
        if layers is None:
            return list(self.config.default_layers)
        requested = set(layers)
        unknown = sorted(requested - set(ALL_LAYERS))
        if unknown:
            logger.warning(f"Ignoring unknown layers {unknown}")
        return sorted(requested & set(ALL_LAYERS))

    def analyze(
        self,
        code: str,
        filename: Optional[str] = None,
        layers: Optional[Iterable[int]] = None,
        verbose: bool = False,
    ) -> AnalysisResult:
        """
        Analyze a buffer across the requested layers.

        Layer 8 findings are converted to generic issues and merged into
        the issue list; the summary is recomputed over the merged list.
        """
        start = time.perf_counter()
        filename = filename or DEFAULT_FILENAME
        requested = self.resolve_layers(layers)

        result = self.engine.analyze(code, filename=filename, layers=requested, verbose=verbose)
        issues = list(result.issues)
        security: Optional[SecuritySummary] = None

        if SECURITY_LAYER in requested:
            scan = self.scanner.scan(code, filename)
            issues.extend(issue.to_issue() for issue in scan.issues)
            security = SecuritySummary(
                threats=scan.summary.total_threats,
                vulnerabilities=sum(1 for i in scan.issues if i.type == ThreatType.VULNERABILITY.value),
                compromise_indicators=scan.compromise_indicators,
                risk_level=scan.risk_level,
            )

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Analysis complete for {filename}",
            extra={"source_file": filename, "layers": requested, "issues": len(issues), "execution_time_ms": elapsed_ms},
        )

        return AnalysisResult(
            issues=issues,
            summary=self.engine.summarize(issues, code, requested),
            security=security,
            metadata=AnalysisMetadata(
                execution_time_ms=elapsed_ms,
                layers_analyzed=requested,
                filename=filename,
                platform=self.config.platform,
            ),
        )

    def apply_fixes(
        self,
        code: str,
        filename: Optional[str] = None,
        layers: Optional[Iterable[int]] = None,
        should_continue: Optional[ShouldContinue] = None,
        on_layer_complete: Optional[LayerCallback] = None,
    ) -> FixResult:
        """
        Rewrite a buffer through the transform safety protocol.

        Args:
            code: Input buffer.
            filename: Picks the grammar; defaults to a TSX file name.
            layers: Layers to run.
            should_continue: Cooperative cancellation check, consulted
                before every layer.
            on_layer_complete: Progress callback per layer.

        Returns:
            FixResult. The output is the input or a validated rewrite.
        """
        filename = filename or DEFAULT_FILENAME
        requested = self.resolve_layers(layers)
        result = self.protocol.run(
            code,
            requested,
            filename=filename,
            should_continue=should_continue,
            on_layer_complete=on_layer_complete,
        )
        logger.info(
            f"Fix run complete for {filename}",
            extra={
                "source_file": filename,
                "applied_fixes": len(result.applied_fixes),
                "cancelled": result.cancelled,
            },
        )
        return result

    def scan_security(self, code: str, filename: Optional[str] = None) -> SecurityScanResult:
        return self.scanner.scan(code, filename or DEFAULT_FILENAME)

    def get_layer_info(self) -> list[dict[str, Any]]:
        """Describe every layer with its rule count."""
        stats = self.engine.get_stats()["rules_by_layer"]
        info = []
        for layer in LAYER_INFO:
            entry = dict(layer)
            if layer["id"] == SECURITY_LAYER:
                entry["rule_count"] = len(self.scanner.patterns)
            else:
                entry["rule_count"] = stats.get(layer["id"], 0)
            info.append(entry)
        return info
