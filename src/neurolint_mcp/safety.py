"""
Transform safety protocol.

Layers run in ascending order, each against the last known-good buffer.
For every layer the structural rewrite is tried first. The rule engine's
pattern fixers then run on the resulting buffer whenever fixable issues of
that layer remain, which covers both a structural tier that raised or was
rejected and one that handled only part of the layer. Each rewrite passes
the validation gate on its own; a layer where nothing validated is reported
as reverted. Nothing here raises to the caller, so the final buffer is
always the input or a buffer that passed validation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Optional

from neurolint_mcp.exceptions import TransformError
from neurolint_mcp.models import AppliedFix, FixResult, LayerReport, LayerStatus, TransformStrategy
from neurolint_mcp.rules_engine import RuleEngine
from neurolint_mcp.transforms import StructuralTransformer
from neurolint_mcp.validation import TransformValidator

logger = logging.getLogger(__name__)

ShouldContinue = Callable[[], bool]
LayerCallback = Callable[[LayerReport, list[AppliedFix]], None]


class TransformSafetyProtocol:
    """
    Runs layer rewrites behind a validation gate.

    Attributes:
        engine: Rule engine providing the pattern fallback and the penalty.
        transformer: Structural rewrites.
        validator: Validation gate.
    """

    def __init__(
        self,
        engine: RuleEngine,
        transformer: StructuralTransformer | None = None,
        validator: TransformValidator | None = None,
    ):
        self.engine = engine
        self.transformer = transformer or StructuralTransformer()
        self.validator = validator or TransformValidator(self.transformer.parser)

    def run(
        self,
        code: str,
        layers: Iterable[int],
        filename: str | None = None,
        should_continue: Optional[ShouldContinue] = None,
        on_layer_complete: Optional[LayerCallback] = None,
    ) -> FixResult:
        """
        Apply the requested layers to ``code``.

        Args:
            code: Input buffer.
            layers: Layers to run; sorted and de-duplicated.
            filename: Picks the grammar and appears in logs.
            should_continue: Checked before each layer; returning False stops
                the run and marks the remaining layers skipped.
            on_layer_complete: Called after each layer with its report and
                the fixes it kept.

        Returns:
            FixResult with one LayerReport per requested layer.
        """
        ordered = sorted(set(layers))

        def penalty(buffer: str) -> int:
            return self.engine.penalty(buffer, ordered)

        known_good = code
        applied: list[AppliedFix] = []
        reports: list[LayerReport] = []
        cancelled = False

        for index, layer in enumerate(ordered):
            if should_continue is not None and not should_continue():
                cancelled = True
                for remaining in ordered[index:]:
                    reports.append(LayerReport(layer_id=remaining, status=LayerStatus.SKIPPED, reason="cancelled"))
                logger.info(
                    f"Fix run cancelled before layer {layer}",
                    extra={"source_file": filename, "layer": layer},
                )
                break

            known_good, report, fixes = self._run_layer(known_good, layer, filename, penalty)
            applied.extend(fixes)
            reports.append(report)
            if on_layer_complete is not None:
                on_layer_complete(report, fixes)

        if not applied:
            known_good = code

        return FixResult(
            success=bool(applied),
            code=known_good,
            original_code=code,
            applied_fixes=applied,
            layers=reports,
            cancelled=cancelled,
        )

    def _has_fixable_issues(self, code: str, layer: int) -> bool:
        for issue in self.engine.find_issues(code, [layer]):
            rule = self.engine.get_rule(issue.rule)
            if rule is not None and rule.fixable:
                return True
        return False

    def _run_layer(
        self,
        known_good: str,
        layer: int,
        filename: str | None,
        penalty: Callable[[str], int],
    ) -> tuple[str, LayerReport, list[AppliedFix]]:
        buffer = known_good
        kept: list[AppliedFix] = []
        strategy = TransformStrategy.NONE
        rejected: list[str] = []

        try:
            structural = self.transformer.transform(buffer, layer, filename)
        except TransformError as e:
            logger.debug(f"Structural transform unavailable for layer {layer}: {e}")
        else:
            if structural.changed:
                outcome = self.validator.validate(buffer, structural.code, filename, penalty)
                if outcome.valid:
                    buffer = structural.code
                    kept.extend(structural.applied_fixes)
                    strategy = TransformStrategy.STRUCTURAL
                else:
                    rejected.append(f"structural: {outcome.reason}")
                    logger.info(
                        f"Structural rewrite for layer {layer} rejected: {outcome.reason}",
                        extra={"source_file": filename, "layer": layer},
                    )

        # The structural tier covers a subset of each layer; pattern fixers
        # pick up whatever fixable issues it left behind.
        if self._has_fixable_issues(buffer, layer):
            fallback = self.engine.apply_fixes(buffer, filename or "unknown.tsx", layers=[layer])
            if fallback.applied_fixes:
                outcome = self.validator.validate(buffer, fallback.code, filename, penalty)
                if outcome.valid:
                    buffer = fallback.code
                    kept.extend(fallback.applied_fixes)
                    if strategy == TransformStrategy.NONE:
                        strategy = TransformStrategy.PATTERN
                else:
                    rejected.append(f"pattern: {outcome.reason}")
                    logger.info(
                        f"Pattern fixes for layer {layer} rejected: {outcome.reason}",
                        extra={"source_file": filename, "layer": layer},
                    )

        if kept:
            return buffer, self._accepted(layer, strategy, kept), kept
        if rejected:
            return known_good, self._reverted(layer, "; ".join(rejected), filename), []
        return known_good, LayerReport(layer_id=layer, status=LayerStatus.UNCHANGED), []

    @staticmethod
    def _accepted(layer: int, strategy: TransformStrategy, fixes: list[AppliedFix]) -> LayerReport:
        return LayerReport(layer_id=layer, status=LayerStatus.ACCEPTED, strategy=strategy, change_count=len(fixes))

    @staticmethod
    def _reverted(layer: int, reason: str, filename: str | None) -> LayerReport:
        logger.warning(
            f"Layer {layer} reverted: {reason}",
            extra={"source_file": filename, "layer": layer},
        )
        return LayerReport(layer_id=layer, status=LayerStatus.REVERTED, reason=reason)
