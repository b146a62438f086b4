"""Markdown renderers for the MCP resources."""
