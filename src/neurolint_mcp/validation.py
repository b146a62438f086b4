"""
Validation gate for rewritten buffers.

A candidate rewrite is accepted only if it is no less valid than the buffer
it replaces: it must not introduce parse errors, must keep the module's
exported bindings and top-level declarations, and must not raise the rule
engine's severity penalty.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from neurolint_mcp.syntax import JSON_GRAMMAR, SourceParser, grammar_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationOutcome:
    """Verdict on a candidate rewrite."""

    valid: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> ValidationOutcome:
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str) -> ValidationOutcome:
        return cls(valid=False, reason=reason)


class TransformValidator:
    """
    Compares a rewrite against the buffer it replaces.

    Attributes:
        parser: Shared source parser.
    """

    def __init__(self, parser: SourceParser | None = None):
        self.parser = parser or SourceParser()

    def validate(
        self,
        before: str,
        after: str,
        filename: str | None = None,
        penalty: Callable[[str], int] | None = None,
    ) -> ValidationOutcome:
        """
        Decide whether ``after`` may replace ``before``.

        Args:
            before: Current known-good buffer.
            after: Candidate rewrite.
            filename: Used to pick the grammar.
            penalty: Scoring function; the rewrite may not score higher.

        Returns:
            ValidationOutcome with a reason when rejected.
        """
        if after == before:
            return ValidationOutcome.ok()

        if grammar_for(filename) == JSON_GRAMMAR:
            outcome = self._validate_json(before, after)
        else:
            outcome = self._validate_source(before, after, filename)
        if not outcome.valid:
            logger.debug(f"Rewrite of {filename} rejected: {outcome.reason}")
            return outcome

        if penalty is not None:
            before_penalty, after_penalty = penalty(before), penalty(after)
            if after_penalty > before_penalty:
                return ValidationOutcome.reject(
                    f"issue penalty increased from {before_penalty} to {after_penalty}"
                )

        return ValidationOutcome.ok()

    def _validate_json(self, before: str, after: str) -> ValidationOutcome:
        try:
            original = self.parser.parse_json(before)
        except json.JSONDecodeError:
            # Already invalid (e.g. tsconfig with comments); nothing to compare.
            return ValidationOutcome.ok()

        try:
            rewritten = self.parser.parse_json(after)
        except json.JSONDecodeError as e:
            return ValidationOutcome.reject(f"rewrite is not valid JSON: {e.msg}")

        if isinstance(original, dict):
            if not isinstance(rewritten, dict) or set(original) != set(rewritten):
                return ValidationOutcome.reject("top-level JSON keys changed")
        return ValidationOutcome.ok()

    def _validate_source(self, before: str, after: str, filename: str | None) -> ValidationOutcome:
        original = self.parser.parse(before, filename)
        rewritten = self.parser.parse(after, filename)

        before_errors, after_errors = original.error_count(), rewritten.error_count()
        if after_errors > before_errors:
            return ValidationOutcome.reject(
                f"rewrite introduced parse errors ({before_errors} -> {after_errors})"
            )

        if original.exported_names() != rewritten.exported_names():
            lost = sorted(original.exported_names() - rewritten.exported_names())
            added = sorted(rewritten.exported_names() - original.exported_names())
            return ValidationOutcome.reject(f"exported bindings changed (lost {lost}, added {added})")

        lost_bindings = original.top_level_bindings() - rewritten.top_level_bindings()
        if lost_bindings:
            return ValidationOutcome.reject(f"top-level declarations lost: {sorted(lost_bindings)}")

        return ValidationOutcome.ok()
