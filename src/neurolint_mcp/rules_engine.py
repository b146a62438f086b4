"""
Rule engine for detecting and fixing React / Next.js code defects.

The engine holds an immutable catalogue of rules: the built-in layers 1-6
from :mod:`neurolint_mcp.catalogue` plus layer-7 learned rules loaded from
JSON files in the rules directory. Each call to :meth:`RuleEngine.analyze`
or :meth:`RuleEngine.apply_fixes` iterates fresh matches, so one engine can
be shared by many threads.

Example:
    >>> engine = RuleEngine()
    >>> result = engine.analyze("console.log('x'); <img src='a'/>", layers=[2, 3])
    >>> result.summary.quality_score
    90
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from neurolint_mcp.catalogue import (
    Rule,
    build_builtin_rules,
    column_number,
    has_client_directive,
    line_number,
)
from neurolint_mcp.config import ADAPTIVE_LAYER, SECURITY_LAYER, NeuroLintConfig, load_config
from neurolint_mcp.exceptions import (
    NeuroLintError,
    PatternCompilationError,
    RuleLoadError,
    RuleValidationError,
)
from neurolint_mcp.models import (
    AnalysisMetadata,
    AnalysisResult,
    AnalysisSummary,
    AppliedFix,
    FixResult,
    Issue,
    IssueFix,
    LearnedRuleDefinition,
)

logger = logging.getLogger(__name__)

# Hooks that make a file a client component for readiness scoring.
READINESS_HOOKS = re.compile(r"\b(useState|useEffect|useContext)\b")

DEFAULT_RECOMMENDED_LAYERS = [1, 2, 3]


# =============================================================================
# Learned rules
# =============================================================================


def _learned_checker(definition: LearnedRuleDefinition):
    fix_description = definition.fix_description or (
        "Apply learned replacement" if definition.replacement is not None else "Review learned pattern"
    )

    def check(code: str, match: re.Match[str]) -> Issue:
        replacement = None
        if definition.replacement is not None:
            replacement = match.expand(definition.replacement)
        return Issue(
            id=f"{definition.id}-{match.start()}",
            rule=definition.id,
            type=definition.type,
            layer=definition.layer,
            severity=definition.severity,
            message=definition.message,
            description=definition.description,
            line=line_number(code, match.start()),
            column=column_number(code, match.start()),
            fix=IssueFix(description=fix_description, replacement=replacement),
        )

    return check


def _learned_fixer(template: str):
    def fix(code: str, match: re.Match[str]) -> str:
        return code[: match.start()] + match.expand(template) + code[match.end():]

    return fix


def _validate_rule(item: Any, path: Path, index: int) -> LearnedRuleDefinition:
    if not isinstance(item, dict):
        raise RuleValidationError(f"Rule at index {index} in {path.name} is not an object")
    try:
        return LearnedRuleDefinition(**item)
    except ValidationError as e:
        raise RuleValidationError(
            f"Rule '{item.get('id')}' failed validation: {e}",
            rule_id=item.get("id"),
            details={"validation_errors": e.errors()},
        ) from e


def _compile_rule(definition: LearnedRuleDefinition) -> Rule:
    flags = re.MULTILINE | (re.IGNORECASE if definition.ignore_case else 0)
    try:
        pattern = re.compile(definition.pattern, flags)
    except re.error as e:
        raise PatternCompilationError(
            f"Invalid regex in rule '{definition.id}': {e}",
            rule_id=definition.id,
            pattern=definition.pattern,
        ) from e

    fix = None
    if definition.replacement is not None:
        try:
            # Reject bad group references now rather than at fix time.
            pattern.sub(definition.replacement, "")
        except (re.error, IndexError) as e:
            raise PatternCompilationError(
                f"Invalid replacement in rule '{definition.id}': {e}",
                rule_id=definition.id,
                pattern=definition.replacement,
            ) from e
        fix = _learned_fixer(definition.replacement)

    return Rule(
        id=definition.id,
        layer=definition.layer,
        name=definition.name,
        description=definition.description or definition.message,
        pattern=pattern,
        check=_learned_checker(definition),
        fix=fix,
    )


def load_rules_file(path: Path) -> list[Rule]:
    """
    Load learned rules from one JSON file.

    The file holds either a list of rule objects or ``{"rules": [...]}``.
    Invalid entries are skipped with a warning; disabled ones are dropped.

    Raises:
        RuleLoadError: If the file cannot be read or is not valid JSON.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise RuleLoadError(f"Invalid JSON in {path}: {e}", path=str(path)) from e
    except OSError as e:
        raise RuleLoadError(f"Cannot read {path}: {e}", path=str(path)) from e

    items = data if isinstance(data, list) else data.get("rules", []) if isinstance(data, dict) else []

    rules: list[Rule] = []
    for idx, item in enumerate(items):
        try:
            definition = _validate_rule(item, path, idx)
            if not definition.enabled:
                continue
            rules.append(_compile_rule(definition))
        except RuleValidationError as e:
            logger.warning(f"Skipping invalid rule at index {idx}: {e}")
        except PatternCompilationError as e:
            logger.warning(f"Skipping rule with invalid pattern: {e}")

    return rules


# =============================================================================
# RuleEngine
# =============================================================================


class RuleEngine:
    """
    Pattern-based detector and fixer for layers 1-7.

    Attributes:
        config: Loaded configuration (weights, context windows, limits).
        rules_dir: Directory learned rules were loaded from.

    Thread Safety:
        The catalogue is built once in ``__init__`` and never mutated. Rules
        hold compiled patterns and pure functions, so concurrent calls do
        not share any match state.
    """

    def __init__(self, config: NeuroLintConfig | None = None, rules_dir: str | Path | None = None):
        """
        Build the catalogue.

        Args:
            config: Configuration to use. Loaded from the rules directory if None.
            rules_dir: Directory holding config.yaml and learned-rule JSON files.

        Raises:
            ConfigurationError: If config.yaml is invalid.
        """
        self.config = config or load_config(rules_dir)
        self.rules_dir = Path(rules_dir) if rules_dir is not None else self.config.rules_dir

        builtin = build_builtin_rules(self.config.context_before, self.config.context_after)
        learned = self._load_learned_rules(known_ids={rule.id for rule in builtin})
        self._rules: tuple[Rule, ...] = tuple(sorted(builtin + tuple(learned), key=lambda r: r.layer))
        self._by_id: dict[str, Rule] = {rule.id: rule for rule in self._rules}

        logger.info(
            "RuleEngine initialized",
            extra={
                "rules_dir": str(self.rules_dir),
                "builtin_rules": len(builtin),
                "learned_rules": len(learned),
            },
        )

    def _load_learned_rules(self, known_ids: set[str]) -> list[Rule]:
        if self.rules_dir is None or not self.rules_dir.exists():
            logger.debug(f"No learned rules directory at {self.rules_dir}")
            return []

        learned: list[Rule] = []
        for json_file in sorted(self.rules_dir.glob("*.json")):
            try:
                rules = load_rules_file(json_file)
            except NeuroLintError as e:
                logger.error(f"Failed to load learned rules from {json_file.name}: {e}")
                continue

            for rule in rules:
                if rule.id in known_ids:
                    logger.warning(f"Skipping learned rule '{rule.id}': id already registered")
                    continue
                known_ids.add(rule.id)
                learned.append(rule)

            logger.info(
                f"Loaded {len(rules)} learned rules from {json_file.name}",
                extra={"path": str(json_file), "rule_count": len(rules)},
            )
        return learned

    # ─────────────────────────────────────────────────────────────────────
    # Detection
    # ─────────────────────────────────────────────────────────────────────

    def _select(self, layers: Iterable[int] | None) -> list[Rule]:
        wanted = set(self._resolve_layers(layers))
        return [rule for rule in self._rules if rule.layer in wanted]

    def _resolve_layers(self, layers: Iterable[int] | None) -> list[int]:
        if layers is None:
            return list(self.config.default_layers)
        return sorted(set(layers))

    def _run_check(self, rule: Rule, code: str, match: re.Match[str]) -> Optional[Issue]:
        try:
            return rule.check(code, match)
        except Exception as e:
            logger.error(f"Checker for rule {rule.id} failed at offset {match.start()}: {e}")
            return None

    def find_issues(self, code: str, layers: Iterable[int] | None = None) -> list[Issue]:
        """Return all confirmed issues for the requested layers, in catalogue order."""
        issues: list[Issue] = []
        for rule in self._select(layers):
            for match in rule.pattern.finditer(code):
                issue = self._run_check(rule, code, match)
                if issue is not None:
                    issues.append(issue)
        return issues

    def analyze(
        self,
        code: str,
        filename: str = "unknown.tsx",
        layers: Iterable[int] | None = None,
        verbose: bool = False,
    ) -> AnalysisResult:
        """
        Detect issues in a buffer.

        Args:
            code: Source text to analyze.
            filename: Name used in metadata.
            layers: Layers to run. Defaults to the configured layers.
                Layer 8 is accepted but produces nothing here; security
                scanning is merged in by the core facade.
            verbose: Log every issue found at INFO level.

        Returns:
            AnalysisResult with issues, summary and metadata.
        """
        requested = self._resolve_layers(layers)
        issues = self.find_issues(code, requested)

        if verbose:
            for issue in issues:
                logger.info(
                    f"{filename}:{issue.line}:{issue.column} [{issue.rule}] {issue.message}",
                    extra={"rule": issue.rule, "layer": issue.layer, "severity": issue.severity},
                )

        return AnalysisResult(
            issues=issues,
            summary=self.summarize(issues, code, requested),
            metadata=AnalysisMetadata(
                layers_analyzed=requested,
                filename=filename,
                platform=self.config.platform,
            ),
        )

    def summarize(self, issues: list[Issue], code: str, layers: Iterable[int] | None = None) -> AnalysisSummary:
        """
        Compute counts and scores for an issue list.

        Quality starts at 100 and loses the configured severity weight per
        issue. Readiness loses a fixed penalty when hooks are used without a
        client directive, plus penalties per hydration and accessibility issue.
        """
        weights = self.config.severity_weights
        readiness = self.config.readiness

        by_layer: dict[int, int] = {}
        by_severity = {"error": 0, "warning": 0, "info": 0}
        for issue in issues:
            by_layer[issue.layer] = by_layer.get(issue.layer, 0) + 1
            by_severity[issue.severity] = by_severity.get(issue.severity, 0) + 1

        penalty = sum(weights.get(issue.severity, 0) for issue in issues)
        quality = max(0, round(100 - penalty))

        readiness_score = 100
        if READINESS_HOOKS.search(code) and not has_client_directive(code):
            readiness_score -= readiness.get("missing_client_boundary", 20)
        readiness_score -= readiness.get("hydration", 10) * sum(1 for i in issues if i.layer == 4)
        readiness_score -= readiness.get("accessibility", 5) * sum(1 for i in issues if i.type == "accessibility")

        return AnalysisSummary(
            total_issues=len(issues),
            issues_by_layer=dict(sorted(by_layer.items())),
            issues_by_severity=by_severity,
            quality_score=quality,
            readiness_score=max(0, readiness_score),
            recommended_layers=sorted(by_layer) or list(DEFAULT_RECOMMENDED_LAYERS),
        )

    def penalty(self, code: str, layers: Iterable[int] | None = None) -> int:
        """Sum of severity weights over the issues found in ``code``."""
        weights = self.config.severity_weights
        return sum(weights.get(issue.severity, 0) for issue in self.find_issues(code, layers))

    # ─────────────────────────────────────────────────────────────────────
    # Fixing
    # ─────────────────────────────────────────────────────────────────────

    def _apply_rule(self, rule: Rule, code: str) -> tuple[str, list[AppliedFix]]:
        """
        Apply one rule's fixer to every confirmed match in the live buffer.

        Each match is searched for in the current buffer and re-checked
        before its fixer runs, so offsets never go stale after an edit.
        """
        fixes: list[AppliedFix] = []
        pos = 0
        while pos <= len(code) and len(fixes) < self.config.max_fixes_per_rule:
            match = rule.pattern.search(code, pos)
            if match is None:
                break

            next_pos = match.end() if match.end() > match.start() else match.start() + 1
            issue = self._run_check(rule, code, match)
            if issue is not None:
                try:
                    updated = rule.fix(code, match)
                except Exception as e:
                    logger.error(f"Fixer for rule {rule.id} failed at offset {match.start()}: {e}")
                    updated = code

                if updated != code:
                    fixes.append(
                        AppliedFix(
                            id=issue.id,
                            layer=rule.layer,
                            description=issue.fix.description if issue.fix else rule.description,
                            line=issue.line,
                        )
                    )
                    next_pos = max(match.start(), match.end() + len(updated) - len(code))
                    code = updated
            pos = next_pos

        if len(fixes) >= self.config.max_fixes_per_rule:
            logger.warning(f"Rule {rule.id} hit the fix limit of {self.config.max_fixes_per_rule}")
        return code, fixes

    def apply_fixes(
        self,
        code: str,
        filename: str = "unknown.tsx",
        layers: Iterable[int] | None = None,
    ) -> FixResult:
        """
        Rewrite a buffer with the fixers of the requested layers.

        Rules run in catalogue order. After each rule the penalty over the
        requested layers is recomputed; a rule whose edits raised it has
        them discarded, so the result never scores worse than the input.

        Args:
            code: Source text to rewrite.
            filename: Name used in log messages.
            layers: Layers whose fixers run.

        Returns:
            FixResult; ``success`` is True only when something changed.
        """
        requested = self._resolve_layers(layers)
        current = code
        applied: list[AppliedFix] = []
        current_penalty = self.penalty(current, requested)

        for rule in self._select(requested):
            if rule.fix is None:
                continue
            updated, fixes = self._apply_rule(rule, current)
            if not fixes:
                continue

            updated_penalty = self.penalty(updated, requested)
            if updated_penalty > current_penalty:
                logger.info(
                    f"Discarding fixes from {rule.id}: penalty rose from {current_penalty} to {updated_penalty}",
                    extra={"rule": rule.id, "source_file": filename},
                )
                continue

            current, current_penalty = updated, updated_penalty
            applied.extend(fixes)

        if not applied:
            current = code

        return FixResult(
            success=bool(applied),
            code=current,
            original_code=code,
            applied_fixes=applied,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Catalogue queries
    # ─────────────────────────────────────────────────────────────────────

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    def get_rule(self, rule_id: str) -> Rule | None:
        """Retrieve a rule by id, or None."""
        return self._by_id.get(rule_id)

    def rules_for_layer(self, layer: int) -> list[Rule]:
        return [rule for rule in self._rules if rule.layer == layer]

    def list_rules(self, layer: int | None = None) -> list[dict[str, Any]]:
        """
        Describe registered rules.

        Args:
            layer: Restrict to one layer, or None for all.

        Returns:
            One dict per rule with id, layer, name, description and fixable.
        """
        rules = self._rules if layer is None else self.rules_for_layer(layer)
        return [
            {
                "id": rule.id,
                "layer": rule.layer,
                "name": rule.name,
                "description": rule.description,
                "fixable": rule.fixable,
            }
            for rule in rules
        ]

    def get_stats(self) -> dict[str, Any]:
        """Rule counts by layer plus the fixable and learned totals."""
        by_layer: dict[int, int] = {}
        for rule in self._rules:
            by_layer[rule.layer] = by_layer.get(rule.layer, 0) + 1
        return {
            "total_rules": len(self._rules),
            "rules_by_layer": by_layer,
            "fixable_rules": sum(1 for rule in self._rules if rule.fixable),
            "learned_rules": len(self.rules_for_layer(ADAPTIVE_LAYER)),
            "security_layer": SECURITY_LAYER,
            "rules_dir": str(self.rules_dir) if self.rules_dir else None,
        }
