"""Resource handlers for exposing rules, layers and configuration via MCP."""

from neurolint_mcp.tools.analyzer import get_cached_core


def get_rules_resource(layer: int | None = None) -> str:
    """Get registered rules as formatted text."""
    rules = get_cached_core().engine.list_rules(layer)
    if not rules:
        return "No rules registered for the specified layer."

    lines = ["# NeuroLint Rules\n"]
    for r in rules:
        lines.append(f"## {r['name']} (`{r['id']}`)")
        lines.append(f"- Layer: {r['layer']}")
        if r["description"]:
            lines.append(f"- Description: {r['description']}")
        if r["fixable"]:
            lines.append("- Auto-fixable: Yes")
        lines.append("")
    return "\n".join(lines)


def get_layers_resource() -> str:
    """Get the layer catalogue as formatted text."""
    lines = ["# NeuroLint Layers\n"]
    for layer in get_cached_core().get_layer_info():
        lines.append(f"{layer['id']}. **{layer['name']}** ({layer['rule_count']} rules): {layer['description']}")
    return "\n".join(lines)


def get_config_resource() -> str:
    """Get the active configuration as formatted text."""
    config = get_cached_core().config
    lines = [
        "# NeuroLint Configuration",
        "",
        f"Default layers: {', '.join(str(layer) for layer in config.default_layers)}",
        f"Platform: {config.platform}",
        f"Context window: {config.context_before} before / {config.context_after} after",
        "",
        "Severity weights:",
    ]
    for name, weight in config.severity_weights.items():
        lines.append(f"  - {name}: {weight}")
    lines.append("")
    lines.append("Jobs:")
    lines.append(f"  - expiry: {config.jobs.expiry_hours} hours")
    lines.append(f"  - max code size: {config.jobs.max_code_bytes} bytes")
    lines.append(f"  - store: {config.jobs.database_path or 'in-memory'}")
    return "\n".join(lines)
