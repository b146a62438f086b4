"""Tests for the rewrite validation gate."""

import pytest

from neurolint_mcp.validation import TransformValidator


@pytest.fixture(scope="module")
def validator():
    return TransformValidator()


def test_identical_buffers_are_valid(validator):
    assert validator.validate("const = ;", "const = ;", "a.ts").valid


def test_harmless_rewrite_is_valid(validator):
    before = "export const a = 1;\nconsole.log(a);\n"
    after = "export const a = 1;\n"
    assert validator.validate(before, after, "a.ts").valid


def test_introduced_parse_error_is_rejected(validator):
    outcome = validator.validate("const a = 1;\n", "const a = ;\n", "a.ts")
    assert not outcome.valid
    assert "parse errors" in outcome.reason


def test_existing_parse_error_is_tolerated(validator):
    before = "const a = ;\nconsole.log(1);\n"
    after = "const a = ;\n"
    assert validator.validate(before, after, "a.ts").valid


def test_removed_export_is_rejected(validator):
    before = "export const a = 1;\nexport function b() {}\n"
    after = "export const a = 1;\nfunction b() {}\n"
    outcome = validator.validate(before, after, "a.ts")
    assert not outcome.valid
    assert "exported bindings changed" in outcome.reason


def test_lost_import_is_rejected(validator):
    outcome = validator.validate("import x from 'x';\nconst a = x;\n", "const a = x;\n", "a.ts")
    assert not outcome.valid
    assert "top-level declarations lost" in outcome.reason


def test_penalty_increase_is_rejected(validator):
    def penalty(code):
        return code.count("TODO")

    outcome = validator.validate("const a = 1;\n", "const a = 1; // TODO\n", "a.ts", penalty)
    assert not outcome.valid
    assert "penalty increased" in outcome.reason
    assert validator.validate("const a = 1; // TODO\n", "const a = 1;\n", "a.ts", penalty).valid


class TestJsonValidation:
    """JSON configuration files are compared by structure, not syntax tree."""

    def test_keys_must_be_preserved(self, validator):
        before = '{"compilerOptions": {}, "include": []}'
        after = '{"compilerOptions": {"strict": true}, "include": []}'
        assert validator.validate(before, after, "tsconfig.json").valid
        outcome = validator.validate(before, '{"compilerOptions": {}}', "tsconfig.json")
        assert not outcome.valid
        assert "keys changed" in outcome.reason

    def test_rewrite_must_parse(self, validator):
        assert not validator.validate('{"a": 1}', '{"a": 1,}', "package.json").valid

    def test_input_that_never_parsed_is_not_compared(self, validator):
        before = '{\n  // comments are allowed in tsconfig\n  "strict": false\n}'
        after = '{\n  // comments are allowed in tsconfig\n  "strict": true\n}'
        assert validator.validate(before, after, "tsconfig.json").valid
