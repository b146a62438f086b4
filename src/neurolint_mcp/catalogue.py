"""
Built-in rule catalogue for layers 1 through 6.

Each rule pairs a compiled regex with a checker and an optional fixer.
Checkers receive the whole buffer and the match; they return ``None`` to
suppress a false positive. Checkers that need lexical context look at a
bounded window around the match instead of parsing the file, so deeply
nested code can produce false negatives.

Fixers return the full rewritten buffer. A fixer that decides the rewrite is
unsafe returns the buffer unchanged and no fix is recorded.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional

from neurolint_mcp.models import Issue, IssueFix, Severity

Checker = Callable[[str, "re.Match[str]"], Optional[Issue]]
Fixer = Callable[[str, "re.Match[str]"], str]


@dataclass(frozen=True)
class Rule:
    """
    A registered detector bound to a layer.

    Attributes:
        id: Unique rule identifier.
        layer: Owning layer (1..7).
        name: Human-readable rule name.
        description: What the rule detects.
        pattern: Compiled detection pattern. Compiled patterns carry no
            match cursor, so a rule can be shared between threads.
        check: Produces an Issue for a match, or None for a false positive.
        fix: Optional fixer returning the rewritten buffer.
    """

    id: str
    layer: int
    name: str
    description: str
    pattern: re.Pattern[str]
    check: Checker
    fix: Optional[Fixer] = None

    @property
    def fixable(self) -> bool:
        return self.fix is not None


# =============================================================================
# Position helpers
# =============================================================================


def line_number(code: str, index: int) -> int:
    """1-based line number of ``index`` in ``code``."""
    return code.count("\n", 0, index) + 1


def column_number(code: str, index: int) -> int:
    """1-based column of ``index`` in ``code``."""
    return index - (code.rfind("\n", 0, index) + 1) + 1


def has_client_directive(code: str) -> bool:
    return "'use client'" in code or '"use client"' in code


def _issue(
    rule_id: str,
    code: str,
    match: re.Match[str],
    *,
    type: str,
    layer: int,
    severity: Severity,
    message: str,
    description: str,
    fix: str,
    replacement: str | None = None,
) -> Issue:
    return Issue(
        id=f"{rule_id}-{match.start()}",
        rule=rule_id,
        type=type,
        layer=layer,
        severity=severity,
        message=message,
        description=description,
        line=line_number(code, match.start()),
        column=column_number(code, match.start()),
        fix=IssueFix(description=fix, replacement=replacement),
    )


def _replace_span(code: str, match: re.Match[str], text: str) -> str:
    return code[: match.start()] + text + code[match.end():]


# =============================================================================
# Layer 1: configuration
# =============================================================================


def _check_ts_strict(code: str, match: re.Match[str]) -> Issue:
    return _issue(
        "ts-strict-mode", code, match,
        type="configuration", layer=1, severity=Severity.WARNING,
        message="TypeScript strict mode is disabled",
        description="Strict mode catches null and implicit-any errors before they reach production",
        fix='Set "strict": true in compilerOptions',
        replacement='"strict": true',
    )


def _fix_ts_strict(code: str, match: re.Match[str]) -> str:
    return _replace_span(code, match, '"strict": true')


def _check_ts_target(code: str, match: re.Match[str]) -> Issue:
    return _issue(
        "ts-legacy-target", code, match,
        type="configuration", layer=1, severity=Severity.INFO,
        message=f"Legacy compilation target {match.group(1)}",
        description="ES5/ES3 targets add down-level helpers that modern React toolchains no longer need",
        fix='Set "target": "es2020"',
        replacement='"target": "es2020"',
    )


def _fix_ts_target(code: str, match: re.Match[str]) -> str:
    return _replace_span(code, match, '"target": "es2020"')


def _check_react_strict(code: str, match: re.Match[str]) -> Issue:
    return _issue(
        "react-strict-mode", code, match,
        type="configuration", layer=1, severity=Severity.WARNING,
        message="React strict mode is disabled in next.config",
        description="reactStrictMode surfaces unsafe lifecycles and side effects during development",
        fix="Set reactStrictMode: true",
        replacement="reactStrictMode: true",
    )


def _fix_react_strict(code: str, match: re.Match[str]) -> str:
    return _replace_span(code, match, "reactStrictMode: true")


# =============================================================================
# Layer 2: patterns
# =============================================================================

HTML_ENTITIES: dict[str, str] = {
    "&quot;": '"',
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&nbsp;": " ",
}

CONSOLE_METHODS = ("log", "warn", "error", "debug", "info")


def _check_html_entity(code: str, match: re.Match[str]) -> Issue:
    return _issue(
        "html-entities", code, match,
        type="pattern", layer=2, severity=Severity.INFO,
        message=f'HTML entity "{match.group(0)}" should be converted',
        description="HTML entities should be replaced with actual characters in JSX",
        fix="Replace HTML entity with character",
        replacement=HTML_ENTITIES.get(match.group(0), match.group(0)),
    )


def _fix_html_entity(code: str, match: re.Match[str]) -> str:
    return _replace_span(code, match, HTML_ENTITIES.get(match.group(0), match.group(0)))


def _check_console(code: str, match: re.Match[str]) -> Issue:
    return _issue(
        "console-statements", code, match,
        type="pattern", layer=2, severity=Severity.WARNING,
        message=f'Console statement "{match.group(1)}" should be removed',
        description="Console statements should be removed in production code",
        fix="Remove console statement",
    )


def _fix_console(code: str, match: re.Match[str]) -> str:
    text = match.group(0)
    # The pattern stops at the first ")", so nested calls leave a partial match.
    if text.count("(") != text.count(")"):
        return code

    # Only remove whole statements; "if (x) console.log()" must keep its body.
    preceding = code[: match.start()].rstrip()
    if preceding and preceding[-1] not in ";{}":
        return code

    start, end = match.start(), match.end()
    line_start = code.rfind("\n", 0, start) + 1
    line_end = code.find("\n", end)
    line_end = len(code) if line_end == -1 else line_end
    if not code[line_start:start].strip() and not code[end:line_end].strip():
        # Statement sits alone on its line: drop the line and its newline.
        return code[:line_start] + code[min(line_end + 1, len(code)):]
    trailing = len(code[end:line_end]) - len(code[end:line_end].lstrip(" \t"))
    return code[:start] + code[end + trailing:]


# =============================================================================
# Layer 3: components
# =============================================================================


def _check_missing_keys(after: int) -> Checker:
    def check(code: str, match: re.Match[str]) -> Optional[Issue]:
        context = code[match.start(): match.start() + after]
        if "key=" in context or "key:" in context:
            return None
        return _issue(
            "missing-keys", code, match,
            type="component", layer=3, severity=Severity.WARNING,
            message="Missing key prop in map function",
            description="React lists need unique key props for efficient reconciliation",
            fix="Add key prop using index or unique identifier",
        )

    return check


def _check_img_alt(code: str, match: re.Match[str]) -> Issue:
    return _issue(
        "img-alt", code, match,
        type="accessibility", layer=3, severity=Severity.WARNING,
        message="Image missing alt attribute",
        description="Images must have alt text for accessibility (WCAG 2.1)",
        fix="Add alt attribute to image",
    )


def _fix_img_alt(code: str, match: re.Match[str]) -> str:
    insert_at = match.start() + len("<img")
    return code[:insert_at] + ' alt=""' + code[insert_at:]


# =============================================================================
# Layer 4: hydration
# =============================================================================


def _is_guarded(code: str, index: int, before: int) -> bool:
    context = code[max(0, index - before): index]
    return "typeof window" in context or "'use client'" in context


def _check_ssr_localstorage(before: int) -> Checker:
    def check(code: str, match: re.Match[str]) -> Optional[Issue]:
        if _is_guarded(code, match.start(), before):
            return None
        return _issue(
            "ssr-localstorage", code, match,
            type="hydration", layer=4, severity=Severity.ERROR,
            message="Unguarded localStorage access",
            description="localStorage is not available during SSR and needs a typeof window guard",
            fix='Add typeof window !== "undefined" guard',
        )

    return check


def _check_ssr_window(before: int) -> Checker:
    def check(code: str, match: re.Match[str]) -> Optional[Issue]:
        if _is_guarded(code, match.start(), before):
            return None
        return _issue(
            "ssr-window", code, match,
            type="hydration", layer=4, severity=Severity.ERROR,
            message=f"Unguarded window.{match.group(1)} access",
            description="window object is not available during SSR",
            fix='Add typeof window !== "undefined" guard or use client directive',
        )

    return check


# =============================================================================
# Layer 5: Next.js directives and React 19 migration
# =============================================================================

CLIENT_HOOKS = ("useState", "useEffect", "useContext", "useReducer", "useCallback", "useMemo", "useRef")


def _check_use_client(code: str, match: re.Match[str]) -> Optional[Issue]:
    if has_client_directive(code):
        return None
    return _issue(
        "missing-use-client", code, match,
        type="nextjs", layer=5, severity=Severity.WARNING,
        message=f"Hook \"{match.group(1)}\" requires 'use client' directive",
        description="React hooks can only be used in Client Components in Next.js App Router",
        fix="Add 'use client' directive at the top of the file",
        replacement="'use client';",
    )


def _fix_use_client(code: str, match: re.Match[str]) -> str:
    if has_client_directive(code):
        return code
    return "'use client';\n\n" + code


def _check_forwardref(code: str, match: re.Match[str]) -> Issue:
    return _issue(
        "forwardref-deprecation", code, match,
        type="migration", layer=5, severity=Severity.INFO,
        message="forwardRef is deprecated in React 19",
        description="React 19 supports ref as a regular prop, forwardRef is no longer needed",
        fix="Convert to direct ref prop pattern",
    )


# =============================================================================
# Layer 6: testing and error boundaries
# =============================================================================


def _check_error_boundary(code: str, match: re.Match[str]) -> Optional[Issue]:
    if "ErrorBoundary" in code or "error.tsx" in code:
        return None
    return _issue(
        "missing-error-boundary", code, match,
        type="testing", layer=6, severity=Severity.INFO,
        message=f'Page component "{match.group(1)}" may need an error boundary',
        description="Page and layout components should have error boundaries for graceful error handling",
        fix="Add error.tsx file for error boundary",
    )


# =============================================================================
# Catalogue
# =============================================================================


def build_builtin_rules(context_before: int = 100, context_after: int = 500) -> tuple[Rule, ...]:
    """
    Build the ordered built-in catalogue.

    Args:
        context_before: Characters hydration checkers inspect before a match.
        context_after: Characters the list-key checker inspects after a match.

    Returns:
        Rules in registration order (ascending layer).
    """
    return (
        Rule(
            id="ts-strict-mode", layer=1, name="TypeScript Strict Mode",
            description="Enable strict type checking in tsconfig.json",
            pattern=re.compile(r'"strict"\s*:\s*false\b'),
            check=_check_ts_strict, fix=_fix_ts_strict,
        ),
        Rule(
            id="ts-legacy-target", layer=1, name="Legacy Compile Target",
            description="Raise the tsconfig compilation target",
            pattern=re.compile(r'"target"\s*:\s*"(es[35])"', re.IGNORECASE),
            check=_check_ts_target, fix=_fix_ts_target,
        ),
        Rule(
            id="react-strict-mode", layer=1, name="React Strict Mode",
            description="Enable reactStrictMode in next.config.js",
            pattern=re.compile(r"\breactStrictMode\s*:\s*false\b"),
            check=_check_react_strict, fix=_fix_react_strict,
        ),
        Rule(
            id="html-entities", layer=2, name="HTML Entities",
            description="Convert HTML entities to proper characters",
            pattern=re.compile(r"&(quot|amp|lt|gt|nbsp);"),
            check=_check_html_entity, fix=_fix_html_entity,
        ),
        Rule(
            id="console-statements", layer=2, name="Console Statements",
            description="Remove console.log statements for production",
            pattern=re.compile(r"console\.(" + "|".join(CONSOLE_METHODS) + r")\s*\([^)]*\);?"),
            check=_check_console, fix=_fix_console,
        ),
        Rule(
            id="missing-keys", layer=3, name="Missing Keys",
            description="Add key props to React list items",
            pattern=re.compile(r"\.map\s*\(\s*\(?([^)]*)\)?\s*=>\s*[(<]"),
            check=_check_missing_keys(context_after),
        ),
        Rule(
            id="img-alt", layer=3, name="Image Alt Text",
            description="Add alt attributes to images for accessibility",
            pattern=re.compile(r"<img\s+(?![^>]*\balt\s*=)[^>]*>", re.IGNORECASE),
            check=_check_img_alt, fix=_fix_img_alt,
        ),
        Rule(
            id="ssr-localstorage", layer=4, name="SSR localStorage",
            description="Guard localStorage access for SSR",
            pattern=re.compile(r"\blocalStorage\."),
            check=_check_ssr_localstorage(context_before),
        ),
        Rule(
            id="ssr-window", layer=4, name="SSR window",
            description="Guard window access for SSR",
            pattern=re.compile(r"\bwindow\.(location|history|navigator|document)\b"),
            check=_check_ssr_window(context_before),
        ),
        Rule(
            id="missing-use-client", layer=5, name="Missing use client",
            description="Add use client directive for client components",
            pattern=re.compile(r"\b(" + "|".join(CLIENT_HOOKS) + r")\s*\("),
            check=_check_use_client, fix=_fix_use_client,
        ),
        Rule(
            id="forwardref-deprecation", layer=5, name="forwardRef Deprecation",
            description="Migrate forwardRef to direct ref props (React 19)",
            pattern=re.compile(r"React\.forwardRef|\bforwardRef\s*\("),
            check=_check_forwardref,
        ),
        Rule(
            id="missing-error-boundary", layer=6, name="Missing Error Boundary",
            description="Components should have error boundaries",
            pattern=re.compile(r"export\s+default\s+function\s+(\w+Page|\w+Layout)\b"),
            check=_check_error_boundary,
        ),
    )
