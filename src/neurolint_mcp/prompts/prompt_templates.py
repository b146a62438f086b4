"""Prompt templates for code review and fix workflows."""

CODE_REVIEW_PROMPT = """You are a React and Next.js code reviewer. Review the following code for framework compatibility, hydration safety, accessibility and security.

**File:** {filename}
**Layers analyzed:** {layers}
**Quality score:** {quality_score}/100
**Readiness score:** {readiness_score}/100

**Code to review:**
```
{code}
```

**Analysis results (from NeuroLint layers):**
{analysis}

Provide a structured review with:
1. Summary of findings
2. Hydration and security issues (if any)
3. Suggestions for improvement
4. Specific line references where applicable
"""

FIX_SUGGESTION_PROMPT = """Suggest a fix for the following code issue.

**Rule ID:** {rule_id}
**Layer:** {layer}
**Message:** {message}
**File:** {filename}
**Line:** {line}

**Current code:**
```
{code}
```

Provide a concrete fix that keeps the module's exports and top-level declarations intact. If the fix is straightforward, show the exact replacement. Otherwise, explain the approach.
"""
