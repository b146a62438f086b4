"""Tests for source parsing and the structural layer transforms."""

import json

import pytest

from neurolint_mcp.exceptions import TransformError
from neurolint_mcp.syntax import SourceParser, grammar_for
from neurolint_mcp.transforms import StructuralTransformer


@pytest.fixture(scope="module")
def transformer():
    return StructuralTransformer()


# =============================================================================
# Parsing
# =============================================================================


@pytest.mark.parametrize(
    "filename, grammar",
    [
        ("tsconfig.json", "json"),
        ("util.ts", "typescript"),
        ("util.mjs", "javascript"),
        ("Button.jsx", "javascript"),
        ("Button.tsx", "tsx"),
        ("README", "tsx"),
        (None, "tsx"),
    ],
)
def test_grammar_for(filename, grammar):
    assert grammar_for(filename) == grammar


def test_exported_names_and_bindings():
    parsed = SourceParser().parse(
        "import React from 'react';\n"
        "const a = 1, b = 2;\n"
        "export function helper() {}\n"
        "export { a as alias, b };\n"
        "export default function Page() { return null; }\n",
        "page.tsx",
    )
    assert {"helper", "alias", "b", "default"} <= parsed.exported_names()
    assert {"import:import React from 'react'", "decl:a", "decl:b", "decl:helper"} <= parsed.top_level_bindings()
    assert not parsed.has_errors


def test_reexport_is_tracked_by_source():
    parsed = SourceParser().parse("export * from './button';\n", "index.ts")
    assert parsed.exported_names() == {"*:'./button'"}


def test_error_count():
    parser = SourceParser()
    assert parser.parse("const a = 1;\n", "a.ts").error_count() == 0
    assert parser.parse("const a = ;\n", "a.ts").error_count() >= 1


def test_json_is_not_parsed_as_source():
    with pytest.raises(ValueError):
        SourceParser().parse("{}", "package.json")


# =============================================================================
# Layer 1: configuration
# =============================================================================


def test_tsconfig_rewrite(transformer):
    code = '{\n  "compilerOptions": {\n    "strict": false,\n    "target": "es5"\n  }\n}\n'
    out = transformer.transform(code, 1, "tsconfig.json")

    assert out.code == '{\n  "compilerOptions": {\n    "strict": true,\n    "target": "es2020"\n  }\n}\n'
    assert [fix.id.rsplit("-", 1)[0] for fix in out.applied_fixes] == ["ts-strict-mode", "ts-legacy-target"]
    assert out.applied_fixes[0].line == 3


def test_tsconfig_already_strict_is_unchanged(transformer):
    code = json.dumps({"compilerOptions": {"strict": True, "target": "es2022"}})
    out = transformer.transform(code, 1, "tsconfig.json")
    assert not out.changed
    assert out.code == code


def test_invalid_json_raises(transformer):
    with pytest.raises(TransformError):
        transformer.transform('{"strict": false,}', 1, "tsconfig.json")


def test_json_ignores_code_layers(transformer):
    code = '{"scripts": {"dev": "next dev"}}'
    assert not transformer.transform(code, 2, "package.json").changed


def test_next_config_strict_mode(transformer):
    out = transformer.transform("module.exports = { reactStrictMode: false };\n", 1, "next.config.js")
    assert out.code == "module.exports = { reactStrictMode: true };\n"
    assert out.applied_fixes[0].id.startswith("react-strict-mode-")


# =============================================================================
# Layer 2: patterns
# =============================================================================


def test_console_statement_removed_from_block(transformer):
    code = "function run() {\n  console.log('a');\n  return 1;\n}\n"
    out = transformer.transform(code, 2, "run.ts")
    assert out.code == "function run() {\n  return 1;\n}\n"
    assert out.applied_fixes[0].line == 2


def test_console_in_braceless_if_is_kept(transformer):
    code = "if (debug) console.log('a');\n"
    assert not transformer.transform(code, 2, "run.ts").changed


def test_console_with_nested_call_is_removed_whole(transformer):
    code = "console.log(format(x));\nrun();\n"
    assert transformer.transform(code, 2, "run.ts").code == "run();\n"


def test_quot_entity_decoded_in_jsx_text(transformer):
    code = "const a = <p>&quot;hi&quot;</p>;\n"
    out = transformer.transform(code, 2, "a.tsx")
    assert out.code == "const a = <p>\"hi\"</p>;\n"
    assert len(out.applied_fixes) == 2


# =============================================================================
# Layer 3: components
# =============================================================================


def test_img_gets_alt(transformer):
    out = transformer.transform('const a = <img src="a.png" />;\n', 3, "a.tsx")
    assert out.code == 'const a = <img alt="" src="a.png" />;\n'


def test_img_with_alt_or_spread_is_unchanged(transformer):
    assert not transformer.transform('const a = <img alt="logo" src="a.png" />;\n', 3, "a.tsx").changed
    assert not transformer.transform("const a = <img {...props} />;\n", 3, "a.tsx").changed


# =============================================================================
# Layer 4: hydration
# =============================================================================


def test_top_level_storage_access_is_guarded(transformer):
    out = transformer.transform("localStorage.setItem('a', '1');\n", 4, "a.ts")
    assert out.code == "if (typeof window !== 'undefined') { localStorage.setItem('a', '1'); }\n"
    assert out.applied_fixes[0].id == "ssr-localstorage-0"


def test_hook_call_is_never_wrapped(transformer):
    code = "useEffect(() => {\n  localStorage.setItem('a', '1');\n}, []);\n"
    out = transformer.transform(code, 4, "a.tsx")
    assert out.code == (
        "useEffect(() => {\n"
        "  if (typeof window !== 'undefined') { localStorage.setItem('a', '1'); }\n"
        "}, []);\n"
    )


def test_window_location_is_guarded(transformer):
    out = transformer.transform("window.location.href = '/';\n", 4, "a.ts")
    assert out.code.startswith("if (typeof window !== 'undefined') {")
    assert out.applied_fixes[0].id.startswith("ssr-window-")


def test_existing_guard_is_respected(transformer):
    code = "if (typeof window !== 'undefined') {\n  localStorage.setItem('a', '1');\n}\n"
    assert not transformer.transform(code, 4, "a.ts").changed


# =============================================================================
# Layer 5: Next.js
# =============================================================================


def test_use_client_added_for_hooks(transformer):
    code = "const [a] = useState(0);\n"
    out = transformer.transform(code, 5, "a.tsx")
    assert out.code == "'use client';\n\n" + code
    assert len(out.applied_fixes) == 1


def test_use_client_not_duplicated(transformer):
    code = "'use client';\nconst [a] = useState(0);\n"
    assert not transformer.transform(code, 5, "a.tsx").changed


# =============================================================================
# Errors
# =============================================================================


def test_unsupported_layer_raises(transformer):
    assert not transformer.supports(6)
    with pytest.raises(TransformError) as excinfo:
        transformer.transform("const a = 1;", 6, "a.ts")
    assert excinfo.value.layer == 6


def test_unparseable_source_raises(transformer):
    with pytest.raises(TransformError):
        transformer.transform("const = ;\nconsole.log(1);\n", 2, "a.ts")


def test_transforms_are_idempotent(transformer):
    code = "const [a] = useState(0);\nconsole.log(a);\nconst img = <img src=\"a\" />;\n"
    for layer in (2, 3, 5):
        once = transformer.transform(code, layer, "a.tsx")
        twice = transformer.transform(once.code, layer, "a.tsx")
        assert not twice.changed
