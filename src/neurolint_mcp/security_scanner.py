"""
Forensic security scanner (layer 8).

Detection only: every pattern carries a fixed severity, threat type and
remediation, and nothing is ever rewritten. The pattern catalogue is
disjoint from the rule engine's so security findings never feed the fix
loop.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from neurolint_mcp.catalogue import column_number, line_number
from neurolint_mcp.models import (
    RiskLevel,
    SecurityIssue,
    SecurityScanResult,
    SecurityScanSummary,
    SecuritySeverity,
    ThreatType,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SecurityPattern:
    """One detection pattern with its fixed classification."""

    id: str
    type: ThreatType
    severity: SecuritySeverity
    category: str
    pattern: re.Pattern[str]
    message: str
    description: str
    remediation: str
    cve: Optional[str] = None


SECURITY_PATTERNS: tuple[SecurityPattern, ...] = (
    SecurityPattern(
        id="eval-injection",
        type=ThreatType.IOC,
        severity=SecuritySeverity.CRITICAL,
        category="Code Injection",
        pattern=re.compile(r"\beval\s*\([^)]*\)"),
        message="Dangerous eval() usage detected",
        description="eval() executes arbitrary code and is a common attack vector",
        remediation="Remove eval() and use JSON.parse() for data or Function constructor alternatives",
    ),
    SecurityPattern(
        id="function-constructor",
        type=ThreatType.IOC,
        severity=SecuritySeverity.HIGH,
        category="Code Injection",
        pattern=re.compile(r"new\s+Function\s*\([^)]*\)"),
        message="Dynamic Function constructor detected",
        description="Function constructor can execute arbitrary code similar to eval()",
        remediation="Avoid dynamic function creation, use static functions instead",
    ),
    SecurityPattern(
        id="base64-payload",
        type=ThreatType.BACKDOOR,
        severity=SecuritySeverity.HIGH,
        category="Obfuscation",
        pattern=re.compile(r"atob\s*\(\s*['\"`][A-Za-z0-9+/=]{50,}['\"`]\s*\)"),
        message="Suspicious Base64 encoded payload detected",
        description="Large Base64 strings decoded at runtime may contain malicious code",
        remediation="Review the decoded content and verify its legitimacy",
    ),
    SecurityPattern(
        id="hex-encoding",
        type=ThreatType.IOC,
        severity=SecuritySeverity.MEDIUM,
        category="Obfuscation",
        pattern=re.compile(r"\\x[0-9a-fA-F]{2}(?:\\x[0-9a-fA-F]{2}){10,}"),
        message="Hex-encoded string detected",
        description="Long hex-encoded strings may be hiding malicious payloads",
        remediation="Decode and review the content",
    ),
    SecurityPattern(
        id="reverse-shell",
        type=ThreatType.BACKDOOR,
        severity=SecuritySeverity.CRITICAL,
        category="Backdoor",
        pattern=re.compile(r"child_process.*exec.*\b(nc|netcat|bash|sh|cmd)\b", re.IGNORECASE),
        message="Potential reverse shell command detected",
        description="This pattern is commonly used in reverse shells and backdoors",
        remediation="Remove the code and audit for compromise",
    ),
    SecurityPattern(
        id="env-exfiltration",
        type=ThreatType.EXFILTRATION,
        severity=SecuritySeverity.HIGH,
        category="Data Exfiltration",
        pattern=re.compile(r"fetch\s*\([^)]*process\.env"),
        message="Environment variable exfiltration attempt",
        description="Sending process.env data over network could leak secrets",
        remediation="Never transmit environment variables, especially secrets",
    ),
    SecurityPattern(
        id="credentials-in-code",
        type=ThreatType.VULNERABILITY,
        severity=SecuritySeverity.HIGH,
        category="Hardcoded Credentials",
        pattern=re.compile(
            r"(password|apikey|api_key|secret|token)\s*[:=]\s*['\"`][^'\"`]{8,}['\"`]", re.IGNORECASE
        ),
        message="Potential hardcoded credentials detected",
        description="Hardcoded credentials in source code are a security risk",
        remediation="Move credentials to environment variables",
    ),
    SecurityPattern(
        id="crypto-miner",
        type=ThreatType.CRYPTO_MINER,
        severity=SecuritySeverity.CRITICAL,
        category="Crypto Mining",
        pattern=re.compile(r"\b(coinhive|cryptonight|monero|stratum\+tcp|minergate)", re.IGNORECASE),
        message="Crypto mining library or protocol detected",
        description="Unauthorized crypto mining uses resources without consent",
        remediation="Remove crypto mining code immediately",
    ),
    SecurityPattern(
        id="postinstall-script",
        type=ThreatType.SUPPLY_CHAIN,
        severity=SecuritySeverity.HIGH,
        category="Supply Chain",
        pattern=re.compile(r'"postinstall"\s*:\s*"[^"]*\b(curl|wget|sh|bash|node\s+-e)'),
        message="Suspicious postinstall script detected",
        description="Postinstall scripts that download/execute code are high risk",
        remediation="Review and remove suspicious postinstall commands",
    ),
    SecurityPattern(
        id="rsc-action-injection",
        type=ThreatType.VULNERABILITY,
        severity=SecuritySeverity.CRITICAL,
        category="RSC Security",
        pattern=re.compile(r"'use server'[\s\S]*?(eval|Function|import\()"),
        message="Dynamic code execution in Server Action",
        description="Server Actions with dynamic code execution can lead to RCE",
        remediation="Never use eval or dynamic imports in Server Actions",
        cve="CVE-2025-55182",
    ),
    SecurityPattern(
        id="unsafe-redirect",
        type=ThreatType.VULNERABILITY,
        severity=SecuritySeverity.MEDIUM,
        category="Open Redirect",
        pattern=re.compile(r"redirect\s*\(\s*(?!['\"`]/|['\"`]http)"),
        message="Potentially unsafe redirect",
        description="Redirects using user input can lead to phishing attacks",
        remediation="Validate redirect URLs against an allowlist",
    ),
    SecurityPattern(
        id="dangerously-set-html",
        type=ThreatType.VULNERABILITY,
        severity=SecuritySeverity.MEDIUM,
        category="XSS",
        pattern=re.compile(r"dangerouslySetInnerHTML\s*=\s*\{\s*\{\s*__html:\s*[^}]*\}\s*\}"),
        message="dangerouslySetInnerHTML usage detected",
        description="Setting HTML directly can lead to XSS if not sanitized",
        remediation="Sanitize HTML content with DOMPurify or similar",
    ),
    SecurityPattern(
        id="sql-injection",
        type=ThreatType.VULNERABILITY,
        severity=SecuritySeverity.CRITICAL,
        category="SQL Injection",
        pattern=re.compile(r"\$\{[^}]*\}.*(?:SELECT|INSERT|UPDATE|DELETE|DROP)", re.IGNORECASE),
        message="Potential SQL injection vulnerability",
        description="String interpolation in SQL queries can lead to injection",
        remediation="Use parameterized queries or an ORM",
    ),
    SecurityPattern(
        id="webshell-pattern",
        type=ThreatType.BACKDOOR,
        severity=SecuritySeverity.CRITICAL,
        category="Webshell",
        pattern=re.compile(r"\b(passthru|shell_exec|system|exec)\s*\(\s*\$_(GET|POST|REQUEST)", re.IGNORECASE),
        message="Webshell pattern detected",
        description="This pattern is commonly found in webshells",
        remediation="Remove the code and audit for compromise",
    ),
    SecurityPattern(
        id="prototype-pollution",
        type=ThreatType.VULNERABILITY,
        severity=SecuritySeverity.HIGH,
        category="Prototype Pollution",
        pattern=re.compile(r"\[['\"`]__proto__['\"`]\]|\[['\"`]constructor['\"`]\]\[['\"`]prototype['\"`]\]"),
        message="Potential prototype pollution",
        description="Accessing __proto__ or constructor.prototype can lead to pollution",
        remediation="Validate and sanitize object keys",
    ),
)

_RISK_ORDER = (
    (SecuritySeverity.CRITICAL, RiskLevel.CRITICAL),
    (SecuritySeverity.HIGH, RiskLevel.HIGH),
    (SecuritySeverity.MEDIUM, RiskLevel.MEDIUM),
    (SecuritySeverity.LOW, RiskLevel.LOW),
)


class SecurityScanner:
    """
    Scans source text for indicators of compromise and known vulnerabilities.

    Example:
        >>> result = SecurityScanner().scan("eval(userInput)", "app.ts")
        >>> result.risk_level
        'critical'
    """

    def __init__(self, patterns: tuple[SecurityPattern, ...] = SECURITY_PATTERNS):
        self.patterns = patterns

    def scan(self, code: str, filename: str = "unknown.tsx") -> SecurityScanResult:
        """
        Run every pattern over ``code``.

        Args:
            code: Source text to scan.
            filename: Name used in log messages.

        Returns:
            SecurityScanResult with per-severity and per-category counts,
            the compromise indicator count and the overall risk level.
        """
        issues: list[SecurityIssue] = []
        categories: dict[str, int] = {}

        for pattern in self.patterns:
            for match in pattern.pattern.finditer(code):
                issues.append(
                    SecurityIssue(
                        id=f"{pattern.id}-{match.start()}",
                        type=pattern.type,
                        severity=pattern.severity,
                        message=pattern.message,
                        description=pattern.description,
                        line=line_number(code, match.start()),
                        column=column_number(code, match.start()),
                        category=pattern.category,
                        cve=pattern.cve,
                        remediation=pattern.remediation,
                    )
                )
                categories[pattern.category] = categories.get(pattern.category, 0) + 1

        counts = {severity: 0 for severity in SecuritySeverity}
        for issue in issues:
            counts[SecuritySeverity(issue.severity)] += 1

        risk_level = next(
            (risk for severity, risk in _RISK_ORDER if counts[severity] > 0),
            RiskLevel.CLEAN,
        )
        compromise = sum(1 for issue in issues if issue.type in (ThreatType.IOC.value, ThreatType.BACKDOOR.value))

        if issues:
            logger.warning(
                f"Security scan of {filename} found {len(issues)} threats",
                extra={"source_file": filename, "risk_level": risk_level.value, "compromise_indicators": compromise},
            )

        return SecurityScanResult(
            issues=issues,
            summary=SecurityScanSummary(
                total_threats=len(issues),
                critical_count=counts[SecuritySeverity.CRITICAL],
                high_count=counts[SecuritySeverity.HIGH],
                medium_count=counts[SecuritySeverity.MEDIUM],
                low_count=counts[SecuritySeverity.LOW],
                categories=categories,
            ),
            compromise_indicators=compromise,
            risk_level=risk_level,
        )
