"""
Unit tests for response parsing and markdown stripping.
"""

import pytest

from reprogrammer.translator.llm_client import strip_markdown_code_blocks
from reprogrammer.translator.response_parser import ResponseParser, unwrap_verbatim


@pytest.fixture
def parser():
    return ResponseParser("<code>", "</code>")


def test_extract_closed_section(parser):
    response = "<response><code>int x = 1;</code><rationale>simple</rationale></response>"

    assert parser.extract_code(response) == "int x = 1;"
    assert parser.is_complete(response)
    assert parser.extract_rationale(response) == "simple"


def test_extract_truncated_section(parser):
    response = "<response><code>int x = 1;\nint y ="

    assert parser.extract_code(response) == "int x = 1;\nint y ="
    assert parser.has_code_section(response)
    assert not parser.is_complete(response)


def test_missing_section_yields_empty(parser):
    assert parser.extract_code("Sorry, I cannot help with that.") == ""
    assert not parser.has_code_section("Sorry")
    assert not parser.is_complete("Sorry</code>")


@pytest.mark.parametrize("response", [None, 42, "", "<code", "</code><code"])
def test_parser_is_total(parser, response):
    """Malformed input never raises."""
    parser.extract_code(response)
    parser.extract_continuation(response)
    parser.is_complete(response)
    parser.extract_rationale(response)
    parser.parse_yes_no(response)


def test_entities_are_decoded(parser):
    assert parser.extract_code("<code>if (a &lt; b &amp;&amp; c) {}</code>") == "if (a < b && c) {}"


def test_cdata_is_unwrapped(parser):
    assert parser.extract_code("<code><![CDATA[a < b]]></code>") == "a < b"
    assert parser.extract_code("<code><![CDATA[a < b") == "a < b"


def test_markdown_fence_inside_section(parser):
    assert parser.extract_code("<code>```java\nint x;\n```</code>") == "int x;"


def test_custom_tags():
    parser = ResponseParser("[[CODE]]", "[[/CODE]]")

    assert parser.extract_code("noise [[CODE]]print(1)[[/CODE]] noise") == "print(1)"


# =============================================================================
# Continuations
# =============================================================================


def test_continuation_with_bare_closing_tag(parser):
    assert parser.extract_continuation("remaining code</code>") == ("remaining code", True)


def test_continuation_without_any_tag(parser):
    assert parser.extract_continuation("more code\n") == ("more code\n", False)


def test_continuation_with_full_section(parser):
    assert parser.extract_continuation("<code>rest</code>") == ("rest", True)
    assert parser.extract_continuation("<code>rest") == ("rest", False)


# =============================================================================
# Yes/No answers
# =============================================================================


@pytest.mark.parametrize(
    "response, expected",
    [
        ("<code>yes</code>", True),
        ("Yes, they are real errors.", True),
        ("<code>No</code>", False),
        ("false", False),
        ("Perhaps", None),
        ("", None),
    ],
)
def test_parse_yes_no(parser, response, expected):
    assert parser.parse_yes_no(response) is expected


# =============================================================================
# Markdown stripping
# =============================================================================


def test_strip_markdown_full_fence():
    assert strip_markdown_code_blocks("```python\nprint(1)\n```") == "print(1)"
    assert strip_markdown_code_blocks("```\nx = 1\n```") == "x = 1"


def test_strip_markdown_unclosed_fence():
    assert strip_markdown_code_blocks("```java\nint x;\nint y;") == "int x;\nint y;"


def test_strip_markdown_leaves_plain_code_alone():
    assert strip_markdown_code_blocks("  x = 1\n") == "  x = 1\n"


def test_unwrap_verbatim_without_wrapper():
    assert unwrap_verbatim("plain") == "plain"
