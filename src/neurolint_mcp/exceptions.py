"""Exception hierarchy for NeuroLint MCP.

Issue severities are data and never raised. Layer transform failures are
raised inside the safety protocol and always recovered there. Job failures
are recorded on the job rather than propagated to the submitting caller.
"""

from __future__ import annotations

from typing import Any


class NeuroLintError(Exception):
    """Base exception for all NeuroLint errors."""

    pass


class ConfigurationError(NeuroLintError):
    """Raised when configuration files are invalid or unreadable."""

    pass


# =============================================================================
# Rule loading
# =============================================================================


class RuleLoadError(NeuroLintError):
    """Raised when a learned-rules file cannot be read or parsed."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class RuleValidationError(NeuroLintError):
    """Raised when a rule definition fails schema validation."""

    def __init__(self, message: str, rule_id: str | None = None, details: dict[str, Any] | None = None):
        self.rule_id = rule_id
        self.details = details or {}
        super().__init__(message)


class PatternCompilationError(NeuroLintError):
    """Raised when a rule's regex pattern cannot be compiled."""

    def __init__(self, message: str, rule_id: str, pattern: str):
        self.rule_id = rule_id
        self.pattern = pattern
        super().__init__(message)


# =============================================================================
# Transforms
# =============================================================================


class TransformError(NeuroLintError):
    """Raised by a structural transform that cannot rewrite the buffer."""

    def __init__(self, message: str, layer: int):
        self.layer = layer
        super().__init__(message)


# =============================================================================
# Jobs
# =============================================================================


class JobError(NeuroLintError):
    """Base exception for analysis job queue errors."""

    pass


class JobValidationError(JobError):
    """Raised when a job request is rejected at creation time."""

    pass


class JobStoreError(JobError):
    """Raised when the job store cannot complete an operation."""

    pass
