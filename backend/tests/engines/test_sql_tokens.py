"""Unit tests for engines.sql.tokens (token scanning)."""

from dynsql.engines.sql.tokens import GenericTokenParser, contains_token, find_tokens


def _upper(content: str) -> str:
    return content.upper()


class TestGenericTokenParser:
    def test_replaces_tokens(self):
        p = GenericTokenParser("${", "}", _upper)
        assert p.parse("a ${x} b ${y}") == "a X b Y"

    def test_no_tokens(self):
        p = GenericTokenParser("${", "}", _upper)
        assert p.parse("plain text") == "plain text"
        assert p.parse("") == ""
        assert p.parse(None) == ""

    def test_escaped_open_token_is_literal(self):
        p = GenericTokenParser("${", "}", _upper)
        assert p.parse("a \\${x} ${y}") == "a ${x} Y"

    def test_escaped_close_token_is_content(self):
        p = GenericTokenParser("${", "}", lambda c: f"<{c}>")
        assert p.parse("${a\\}b}") == "<a}b>"

    def test_unclosed_token_left_as_text(self):
        p = GenericTokenParser("${", "}", _upper)
        assert p.parse("a ${x") == "a ${x"

    def test_adjacent_tokens(self):
        p = GenericTokenParser("#{", "}", lambda c: "?")
        assert p.parse("#{a}#{b},#{c}") == "??,?"


def test_find_tokens():
    assert find_tokens("x = #{a} and y = #{b.c}", "#{") == ["a", "b.c"]
    assert find_tokens("\\#{a}", "#{") == []


def test_contains_token():
    assert contains_token("ORDER BY ${col}", "${")
    assert not contains_token("ORDER BY #{col}", "${")
