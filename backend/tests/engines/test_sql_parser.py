"""Unit tests for engines.sql.parser (XML-tagged templates)."""

from unittest.mock import patch

import pytest

from dynsql.core.errors import BuilderError, SecurityValidationError
from dynsql.engines.sql import parse_parameters
from dynsql.engines.sql.parser import XMLScriptBuilder, parse_xml
from dynsql.engines.sql.sources import DynamicSqlSource, RawSqlSource


def build(script: str, **kwargs):
    return XMLScriptBuilder(script, **kwargs).parse_script_node()


def squash(sql: str) -> str:
    return " ".join(sql.split())


class TestParseXml:
    def test_bare_body_is_wrapped(self):
        root = parse_xml("SELECT 1")
        assert root.tag == "script"
        assert root.text == "SELECT 1"

    def test_explicit_script_root(self):
        assert parse_xml("<script>SELECT 1</script>").text == "SELECT 1"

    def test_malformed(self):
        with pytest.raises(BuilderError, match="Invalid SQL script"):
            parse_xml("SELECT <if test='a'>x")


class TestXMLScriptBuilder:
    def test_static_template_is_raw(self):
        source = build("SELECT * FROM t WHERE id = #{id}")
        assert isinstance(source, RawSqlSource)
        bound = source.get_bound_statement({"id": 3})
        assert bound.sql == "SELECT * FROM t WHERE id = ?"
        assert bound.parameter_values() == [3]

    def test_substitution_makes_it_dynamic(self):
        source = build("SELECT * FROM ${table}")
        assert isinstance(source, DynamicSqlSource)
        assert source.get_bound_statement({"table": "users"}).sql == "SELECT * FROM users"

    def test_where_if(self):
        source = build(
            "SELECT * FROM t <where>"
            "<if test='a != null'>AND a = #{a}</if>"
            "<if test='b != null'>AND b = #{b}</if>"
            "</where>"
        )
        bound = source.get_bound_statement({"a": None, "b": 2})
        assert squash(bound.sql) == "SELECT * FROM t WHERE b = ?"
        assert bound.parameter_values() == [2]

    def test_foreach(self):
        source = build(
            "SELECT * FROM t WHERE id IN "
            "<foreach collection='ids' item='id' open='(' separator=',' close=')'>#{id}</foreach>"
        )
        bound = source.get_bound_statement({"ids": [4, 5]})
        assert squash(bound.sql) == "SELECT * FROM t WHERE id IN (?,?)"
        assert bound.parameter_values() == [4, 5]

    def test_foreach_nullable_attribute(self):
        source = build("<foreach collection='ids' item='id' nullable='true'>#{id}</foreach>")
        assert source.get_bound_statement({"ids": None}).sql == ""

    def test_choose(self):
        source = build(
            "SELECT * FROM t WHERE "
            "<choose>"
            "<when test='kind == \"a\"'>a = 1</when>"
            "<when test='kind == \"b\"'>b = 1</when>"
            "<otherwise>1 = 1</otherwise>"
            "</choose>"
        )
        assert squash(source.get_bound_statement({"kind": "b"}).sql) == "SELECT * FROM t WHERE b = 1"
        assert squash(source.get_bound_statement({"kind": "z"}).sql) == "SELECT * FROM t WHERE 1 = 1"

    def test_set_and_bind(self):
        source = build(
            "UPDATE t <set><if test='name'>name = #{name},</if><if test='age'>age = #{age},</if></set>"
            "<bind name='like' value=\"'%' ~ name ~ '%'\"/> WHERE name LIKE #{like}"
        )
        bound = source.get_bound_statement({"name": "ann", "age": None})
        assert squash(bound.sql) == "UPDATE t SET name = ? WHERE name LIKE ?"
        assert bound.parameter_values() == ["ann", "%ann%"]

    def test_trim(self):
        source = build(
            "<trim prefix='WHERE (' prefixOverrides='OR ' suffix=')'>"
            "<if test='a'>OR a = 1</if><if test='b'>OR b = 1</if></trim>"
        )
        assert source.get_bound_statement({"a": True, "b": True}).sql == "WHERE ( a = 1 OR b = 1 )"

    def test_unknown_element(self):
        with pytest.raises(BuilderError, match="Unknown element <loop>"):
            build("SELECT <loop/>")

    def test_missing_required_attribute(self):
        with pytest.raises(BuilderError, match="requires attribute 'test'"):
            build("<if>x</if>")

    def test_too_many_otherwise(self):
        with pytest.raises(BuilderError, match="Too many default"):
            build("<choose><otherwise>a</otherwise><otherwise>b</otherwise></choose>")

    def test_injection_filter(self):
        source = build("ORDER BY ${col}", injection_filter=r"\w+")
        assert source.get_bound_statement({"col": "name"}).sql == "ORDER BY name"
        with pytest.raises(SecurityValidationError):
            source.get_bound_statement({"col": "1; DROP TABLE t"})

    def test_allow_pattern_from_settings(self):
        with patch("dynsql.engines.sql.parser.settings.SUBSTITUTION_ALLOW_PATTERN", r"[a-z]+"):
            source = build("ORDER BY ${col}")
        with pytest.raises(SecurityValidationError):
            source.get_bound_statement({"col": "NAME"})

    def test_invalid_allow_pattern(self):
        with pytest.raises(BuilderError, match="allow-pattern"):
            build("ORDER BY ${col}", injection_filter="[")

    def test_database_id_binding(self):
        source = build(
            "SELECT <if test=\"_databaseId == 'pg'\">now()</if>"
            "<if test=\"_databaseId != 'pg'\">sysdate</if>",
            database_id="pg",
        )
        assert squash(source.get_bound_statement({}).sql) == "SELECT now()"


class TestParseParameters:
    def test_names(self):
        script = (
            "SELECT * FROM ${table} <where>"
            "<if test='name != null'>AND name = #{name}</if>"
            "<foreach collection='ids' item='id' index='i' open='AND id IN (' separator=',' close=')'>"
            "#{id}</foreach>"
            "</where> <bind name='x' value='limit + 1'/> LIMIT #{x} OFFSET #{page.offset}"
        )
        assert parse_parameters(script) == ["ids", "limit", "name", "page", "table"]

    def test_reserved_and_globals_excluded(self):
        assert parse_parameters("<if test='_databaseId == null'>#{a}</if>") == ["a"]

    def test_static(self):
        assert parse_parameters("SELECT 1") == []
