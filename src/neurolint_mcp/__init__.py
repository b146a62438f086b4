"""NeuroLint MCP - Multi-layer React/Next.js analysis and safe automatic repair via Model Context Protocol."""

__version__ = "0.1.0"

from neurolint_mcp.core import NeuroLintCore
from neurolint_mcp.rules_engine import RuleEngine
from neurolint_mcp.security_scanner import SecurityScanner

__all__ = [
    "NeuroLintCore",
    "RuleEngine",
    "SecurityScanner",
]
