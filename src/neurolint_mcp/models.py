"""
Pydantic models for NeuroLint MCP.

This module defines the records that flow through the engine and the job
queue: issue severities, security threat types, issues, analysis and fix
results, per-layer transform reports, and analysis jobs.

All status, priority and severity fields are closed enumerations; any other
value fails validation instead of becoming a new case.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Enumerations
# =============================================================================


class Severity(str, Enum):
    """
    Issue severity reported by the rule engine.

    Attributes:
        ERROR: Breaks behaviour (e.g. hydration mismatches). Weight 10.
        WARNING: Likely defect or migration blocker. Weight 5.
        INFO: Style or modernisation hint. Weight 1.
    """

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class SecuritySeverity(str, Enum):
    """Fixed severity attached to each security pattern."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    def to_severity(self) -> Severity:
        """Map onto the generic issue severity used in unified results."""
        if self in (SecuritySeverity.CRITICAL, SecuritySeverity.HIGH):
            return Severity.ERROR
        if self is SecuritySeverity.MEDIUM:
            return Severity.WARNING
        return Severity.INFO


class ThreatType(str, Enum):
    """Threat category of a security finding."""

    IOC = "ioc"
    VULNERABILITY = "vulnerability"
    BACKDOOR = "backdoor"
    EXFILTRATION = "exfiltration"
    CRYPTO_MINER = "crypto-miner"
    SUPPLY_CHAIN = "supply-chain"


class RiskLevel(str, Enum):
    """Highest security severity found in a scan, or CLEAN."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    CLEAN = "clean"


class LayerStatus(str, Enum):
    """
    Outcome of one layer inside the transform safety protocol.

    Attributes:
        ACCEPTED: The layer's rewrite passed validation and was kept.
        UNCHANGED: The layer had nothing to rewrite.
        REVERTED: Both rewrite tiers were rejected; the buffer was restored.
        SKIPPED: The layer never ran (cancellation).
    """

    ACCEPTED = "accepted"
    UNCHANGED = "unchanged"
    REVERTED = "reverted"
    SKIPPED = "skipped"


class TransformStrategy(str, Enum):
    """Which rewrite tier produced a layer's output."""

    STRUCTURAL = "structural"
    PATTERN = "pattern"
    NONE = "none"


class JobStatus(str, Enum):
    """
    Lifecycle state of an analysis job.

    Legal transitions: PENDING -> PROCESSING -> {COMPLETED, FAILED}, and
    PENDING/PROCESSING -> CANCELLED. COMPLETED, FAILED and CANCELLED are
    terminal.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

    def can_transition_to(self, target: JobStatus) -> bool:
        """Return True if moving from this status to ``target`` is legal."""
        return target in _JOB_TRANSITIONS[self]


_JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class JobPriority(str, Enum):
    """Scheduling priority of an analysis job."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        """Numeric rank, higher is scheduled first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[JobPriority, int] = {
    JobPriority.LOW: 0,
    JobPriority.NORMAL: 1,
    JobPriority.HIGH: 2,
    JobPriority.URGENT: 3,
}


class CallerTier(str, Enum):
    """Service level of the calling account, supplied by the API boundary."""

    FREE = "free"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


# =============================================================================
# Issues
# =============================================================================


class IssueFix(BaseModel):
    """Suggested remediation attached to an issue."""

    model_config = ConfigDict(frozen=True)

    description: str = Field(..., description="Human description of the fix")
    replacement: Optional[str] = Field(default=None, description="Replacement text, when known")


class Issue(BaseModel):
    """
    One reported defect instance.

    Issues are produced fresh on every analysis call and never mutated.
    The id is derived from the rule and match offset so repeated analysis
    of the same buffer yields identical issue lists.

    Attributes:
        id: Deterministic identifier (``<rule>-<offset>``).
        rule: Identifier of the rule that produced the issue.
        type: Issue family (pattern, component, hydration, accessibility, ...).
        layer: Layer that owns the rule (1..8).
        severity: error, warning or info.
        message: Short human message.
        description: Longer explanation.
        line: 1-based line of the match.
        column: 1-based column of the match.
        fix: Optional suggested fix.
        category: Security category for issues converted from layer 8.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(..., min_length=1)
    rule: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    layer: int = Field(..., ge=1, le=8)
    severity: Severity
    message: str
    description: str = ""
    line: int = Field(..., ge=1)
    column: int = Field(..., ge=1)
    fix: Optional[IssueFix] = None
    category: Optional[str] = None


class SecurityIssue(BaseModel):
    """
    A security finding from the forensic scanner.

    Structurally parallel to Issue but carries a threat type, a fixed
    security severity, an optional CVE identifier and remediation advice.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(..., min_length=1)
    type: ThreatType
    severity: SecuritySeverity
    message: str
    description: str
    line: int = Field(..., ge=1)
    column: int = Field(..., ge=1)
    category: str
    cve: Optional[str] = Field(default=None, pattern=r"^CVE-\d{4}-\d+$")
    remediation: str

    def to_issue(self) -> Issue:
        """Convert into a generic layer-8 Issue for unified results."""
        return Issue(
            id=self.id,
            rule=f"security-{self.type}",
            type=self.type,
            layer=8,
            severity=SecuritySeverity(self.severity).to_severity(),
            message=self.message,
            description=self.description,
            line=self.line,
            column=self.column,
            fix=IssueFix(description=self.remediation),
            category=self.category,
        )


# =============================================================================
# Analysis results
# =============================================================================


class AnalysisSummary(BaseModel):
    """Counts and scores computed over an issue list."""

    total_issues: int = Field(default=0, ge=0)
    issues_by_layer: dict[int, int] = Field(default_factory=dict)
    issues_by_severity: dict[str, int] = Field(
        default_factory=lambda: {"error": 0, "warning": 0, "info": 0}
    )
    quality_score: int = Field(default=100, ge=0, le=100)
    readiness_score: int = Field(default=100, ge=0, le=100)
    recommended_layers: list[int] = Field(default_factory=lambda: [1, 2, 3])


class SecuritySummary(BaseModel):
    """Security section attached to a unified result when layer 8 ran."""

    model_config = ConfigDict(use_enum_values=True)

    threats: int = Field(default=0, ge=0)
    vulnerabilities: int = Field(default=0, ge=0)
    compromise_indicators: int = Field(default=0, ge=0)
    risk_level: RiskLevel = RiskLevel.CLEAN


class AnalysisMetadata(BaseModel):
    """Execution metadata for a single analysis call."""

    execution_time_ms: float = Field(default=0.0, ge=0)
    layers_analyzed: list[int] = Field(default_factory=list)
    filename: str = "unknown.tsx"
    platform: str = "mcp"


class AnalysisResult(BaseModel):
    """
    Full result of analyzing one buffer.

    Invariants (validated): the severity counts sum to the number of
    issues, ``total_issues`` matches the issue list, and every key of
    ``issues_by_layer`` is one of the analyzed layers.
    """

    issues: list[Issue] = Field(default_factory=list)
    summary: AnalysisSummary = Field(default_factory=AnalysisSummary)
    security: Optional[SecuritySummary] = None
    metadata: Optional[AnalysisMetadata] = None

    @model_validator(mode="after")
    def validate_counts(self) -> AnalysisResult:
        """Keep the summary consistent with the issue list."""
        if sum(self.summary.issues_by_severity.values()) != len(self.issues):
            raise ValueError("issues_by_severity must sum to the number of issues")
        if self.summary.total_issues != len(self.issues):
            raise ValueError(
                f"total_issues ({self.summary.total_issues}) must match issues count ({len(self.issues)})"
            )
        if self.metadata is not None:
            stray = set(self.summary.issues_by_layer) - set(self.metadata.layers_analyzed)
            if stray:
                raise ValueError(f"issues reported for layers that were not analyzed: {sorted(stray)}")
        return self


class AppliedFix(BaseModel):
    """One in-place change made by a fixer or structural transform."""

    id: str = Field(..., description="Identifier of the issue the fix addressed")
    layer: int = Field(..., ge=1, le=8)
    description: str
    line: int = Field(..., ge=1)


class LayerReport(BaseModel):
    """
    Per-layer outcome of the transform safety protocol.

    Attributes:
        layer_id: Layer number.
        status: accepted, unchanged, reverted or skipped.
        strategy: Tier whose output was accepted (none if nothing was).
        change_count: Number of applied fixes kept for the layer.
        reason: Why the layer was reverted or skipped, if it was.
    """

    model_config = ConfigDict(use_enum_values=True)

    layer_id: int = Field(..., ge=1, le=8)
    status: LayerStatus
    strategy: TransformStrategy = TransformStrategy.NONE
    change_count: int = Field(default=0, ge=0)
    reason: Optional[str] = None


class FixResult(BaseModel):
    """
    Result of rewriting a buffer.

    Invariant: when ``applied_fixes`` is empty the rewritten ``code`` equals
    ``original_code``, and ``success`` is exactly ``bool(applied_fixes)``.
    """

    success: bool = False
    code: str
    original_code: str
    applied_fixes: list[AppliedFix] = Field(default_factory=list)
    error: Optional[str] = None
    layers: list[LayerReport] = Field(default_factory=list)
    cancelled: bool = False

    @model_validator(mode="after")
    def validate_fixes(self) -> FixResult:
        if not self.applied_fixes and self.code != self.original_code:
            raise ValueError("code changed without any applied fix")
        if self.success != bool(self.applied_fixes):
            raise ValueError("success must reflect whether fixes were applied")
        return self


# =============================================================================
# Security scan results
# =============================================================================


class SecurityScanSummary(BaseModel):
    """Per-severity and per-category counts of a security scan."""

    total_threats: int = Field(default=0, ge=0)
    critical_count: int = Field(default=0, ge=0)
    high_count: int = Field(default=0, ge=0)
    medium_count: int = Field(default=0, ge=0)
    low_count: int = Field(default=0, ge=0)
    categories: dict[str, int] = Field(default_factory=dict)


class SecurityScanResult(BaseModel):
    """Result of a detection-only security scan."""

    model_config = ConfigDict(use_enum_values=True)

    issues: list[SecurityIssue] = Field(default_factory=list)
    summary: SecurityScanSummary = Field(default_factory=SecurityScanSummary)
    compromise_indicators: int = Field(default=0, ge=0)
    risk_level: RiskLevel = RiskLevel.CLEAN


# =============================================================================
# Learned rules (layer 7 and custom rule files)
# =============================================================================


class LearnedRuleDefinition(BaseModel):
    """
    Declarative rule loaded from a JSON file in the rules directory.

    Learned rules default to the adaptive layer (7). A ``replacement``
    makes the rule fixable: it is expanded against the match with
    ``re.Match.expand`` so group references such as ``\\1`` work.
    """

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(..., min_length=1, pattern=r"^[a-z0-9-]+$")
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    pattern: str = Field(..., min_length=1)
    severity: Severity = Severity.INFO
    type: str = "adaptive"
    message: str = Field(..., min_length=1)
    layer: int = Field(default=7, ge=1, le=7)
    replacement: Optional[str] = None
    fix_description: Optional[str] = None
    ignore_case: bool = False
    enabled: bool = True


# =============================================================================
# Jobs
# =============================================================================


class Caller(BaseModel):
    """Identity and tier of the account making queue requests."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    user_id: str = Field(..., min_length=1)
    tier: CallerTier = CallerTier.FREE


class AnalysisRequest(BaseModel):
    """
    Request to analyze (and optionally fix) a buffer.

    Example:
        >>> AnalysisRequest(code="console.log('x')", layers=[2], options={"apply_fixes": True})
    """

    model_config = ConfigDict(use_enum_values=True)

    code: str
    filename: Optional[str] = None
    layers: Optional[list[int]] = None
    options: dict[str, Any] = Field(default_factory=dict)
    priority: Optional[JobPriority] = None
    project_id: Optional[str] = None


class JobSummary(BaseModel):
    total_issues: int = Field(default=0, ge=0)
    issues_by_layer: dict[int, int] = Field(default_factory=dict)
    quality_score: int = Field(default=100, ge=0, le=100)
    execution_time_ms: float = Field(default=0.0, ge=0)


class JobLayerResult(BaseModel):
    layer_id: int = Field(..., ge=1, le=8)
    success: bool
    change_count: int = Field(default=0, ge=0)
    issues: list[Issue] = Field(default_factory=list)


class AnalysisJobResult(BaseModel):
    """Result a worker writes onto a completed job."""

    success: bool
    issues: list[Issue] = Field(default_factory=list)
    transformed_code: Optional[str] = None
    summary: JobSummary = Field(default_factory=JobSummary)
    layers: list[JobLayerResult] = Field(default_factory=list)


class JobView(BaseModel):
    """Polling projection of a job returned to its owner."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    status: JobStatus
    progress: int
    result: Optional[AnalysisJobResult] = None
    error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class AnalysisJob(BaseModel):
    """
    A persisted, asynchronous unit of analysis work.

    Created by the submitting caller; status, progress, result and
    timestamps are mutated only by a worker, except for cancellation by the
    owner while the job is pending or processing.
    """

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    project_id: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    priority: JobPriority = JobPriority.NORMAL
    code: str
    filename: Optional[str] = None
    layers: list[int] = Field(default_factory=list)
    options: dict[str, Any] = Field(default_factory=dict)
    result: Optional[AnalysisJobResult] = None
    error: Optional[str] = None
    progress: int = Field(default=0, ge=0, le=100)
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: datetime

    @field_validator("layers")
    @classmethod
    def validate_layers(cls, v: list[int]) -> list[int]:
        """Ensure every layer id is in the supported range."""
        invalid = [layer for layer in v if not 1 <= layer <= 8]
        if invalid:
            raise ValueError(f"unsupported layers: {invalid}")
        return v

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    @property
    def job_priority(self) -> JobPriority:
        return JobPriority(self.priority)

    def view(self) -> JobView:
        """Return the polling projection of this job."""
        return JobView(
            id=self.id,
            status=self.status,
            progress=self.progress,
            result=self.result,
            error=self.error,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


class JobSubmission(BaseModel):
    """Immediate response to an asynchronous submission."""

    model_config = ConfigDict(use_enum_values=True)

    job_id: str
    status: JobStatus
    estimated_wait: str
