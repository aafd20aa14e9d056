"""Unit tests for engines.sql.nodes (template node semantics)."""

import pytest

from dynsql.core.errors import EvaluationError, SecurityValidationError
from dynsql.engines.sql.nodes import (
    ChooseSqlNode,
    ForEachSqlNode,
    IfSqlNode,
    MixedSqlNode,
    SetSqlNode,
    StaticTextSqlNode,
    TextSqlNode,
    TrimSqlNode,
    VarDeclSqlNode,
    WhereSqlNode,
)
from dynsql.engines.sql.sources import evaluate


def text(s: str) -> StaticTextSqlNode:
    return StaticTextSqlNode(s)


class TestStaticAndText:
    def test_static_is_pure_append(self, make_context):
        node = text("SELECT 1")
        ctx = make_context({"a": 1})
        assert node.apply(ctx)
        assert node.apply(ctx)
        assert ctx.sql == "SELECT 1 SELECT 1"

    def test_substitution(self, make_context):
        ctx = make_context({"col": "name", "dir": None})
        TextSqlNode("ORDER BY ${col} ${dir}").apply(ctx)
        assert ctx.sql == "ORDER BY name"

    def test_substitution_of_simple_argument_as_value(self, make_context):
        ctx = make_context(42)
        TextSqlNode("LIMIT ${value}").apply(ctx)
        assert ctx.sql == "LIMIT 42"

    def test_injection_filter(self, make_context):
        node = TextSqlNode("ORDER BY ${col}", injection_filter=r"[A-Za-z_]+")
        ok = make_context({"col": "name"})
        node.apply(ok)
        assert ok.sql == "ORDER BY name"
        with pytest.raises(SecurityValidationError, match="conform to regex"):
            node.apply(make_context({"col": "name; DROP TABLE t"}))

    def test_is_dynamic(self):
        assert TextSqlNode("a ${b}").is_dynamic
        assert not TextSqlNode("a #{b}").is_dynamic
        assert not TextSqlNode("a \\${b}").is_dynamic


class TestIfAndChoose:
    def test_if(self, make_context):
        node = IfSqlNode(text("x"), "flag")
        ctx = make_context({"flag": True})
        assert node.apply(ctx)
        assert ctx.sql == "x"
        empty = make_context({"flag": 0})
        assert not node.apply(empty)
        assert empty.sql == ""

    def test_choose_first_true_wins(self, make_context):
        node = ChooseSqlNode(
            [IfSqlNode(text("A"), "false"), IfSqlNode(text("B"), "true"), IfSqlNode(text("C"), "true")],
            text("D"),
        )
        ctx = make_context()
        assert node.apply(ctx)
        assert ctx.sql == "B"

    def test_choose_default(self, make_context):
        node = ChooseSqlNode([IfSqlNode(text("A"), "false")], text("D"))
        ctx = make_context()
        assert node.apply(ctx)
        assert ctx.sql == "D"

    def test_choose_nothing(self, make_context):
        ctx = make_context()
        assert not ChooseSqlNode([IfSqlNode(text("A"), "false")]).apply(ctx)
        assert ctx.sql == ""


class TestBind:
    def test_bind_visible_to_later_nodes(self, make_context):
        ctx = make_context({"name": "ann"})
        MixedSqlNode(
            [VarDeclSqlNode("pattern", "'%' ~ name ~ '%'"), TextSqlNode("LIKE '${pattern}'")]
        ).apply(ctx)
        assert ctx.bindings["pattern"] == "%ann%"
        assert ctx.sql == "LIKE '%ann%'"


class TestTrim:
    def test_where_strips_leading_and(self, make_context):
        node = WhereSqlNode(
            MixedSqlNode([IfSqlNode(text("AND a=1"), "true"), IfSqlNode(text("AND b=2"), "true")])
        )
        ctx = make_context()
        node.apply(ctx)
        assert ctx.sql == "WHERE a=1 AND b=2"
        assert not ctx.sql.upper().startswith("WHERE AND")

    def test_where_empty(self, make_context):
        ctx = make_context()
        ctx.append("SELECT 1")
        WhereSqlNode(IfSqlNode(text("AND a=1"), "false")).apply(ctx)
        assert ctx.sql == "SELECT 1"

    def test_set_strips_trailing_comma(self, make_context):
        ctx = make_context({"a": 1, "b": None})
        SetSqlNode(
            MixedSqlNode([IfSqlNode(text("a=#{a},"), "a != null"), IfSqlNode(text("b=#{b},"), "b != null")])
        ).apply(ctx)
        assert ctx.sql == "SET a=#{a}"

    def test_custom_trim(self, make_context):
        ctx = make_context()
        TrimSqlNode(text("OR x=1"), prefix="(", prefix_overrides="AND |OR ", suffix=")").apply(ctx)
        assert ctx.sql == "( x=1 )"


class TestForEach:
    def test_empty_collection_writes_nothing(self, make_context):
        ctx = make_context({"ids": []})
        node = ForEachSqlNode(text("#{v}"), "ids", item="v", open="(", close=")", separator=",")
        assert node.apply(ctx)
        assert ctx.sql == ""

    def test_null_collection(self, make_context):
        node = ForEachSqlNode(text("#{v}"), "ids", item="v")
        with pytest.raises(EvaluationError):
            node.apply(make_context({"ids": None}))
        nullable = ForEachSqlNode(text("#{v}"), "ids", item="v", nullable=True)
        ctx = make_context({"ids": None})
        assert nullable.apply(ctx)
        assert ctx.sql == ""

    def test_items_are_disambiguated(self, make_context):
        ctx = make_context({"ids": ["a", "b"]})
        ForEachSqlNode(text("#{x}"), "ids", item="x", separator=",").apply(ctx)
        assert ctx.sql == "#{__frch_x_0},#{__frch_x_1}"
        assert ctx.bindings["__frch_x_0"] == "a"
        assert ctx.bindings["__frch_x_1"] == "b"
        assert "x" not in ctx.bindings

    def test_separator_skips_silent_iterations(self, make_context):
        body = IfSqlNode(text("#{v}"), "v > 2")
        ctx = make_context({"vals": [1, 2, 3, 4]})
        ForEachSqlNode(body, "vals", item="v", separator=",", open="(", close=")").apply(ctx)
        assert ctx.sql == "(#{__frch_v_2},#{__frch_v_3})"

    def test_silent_loop_leaves_no_gap(self, make_context):
        ctx = make_context({"vals": [1, 2]})
        MixedSqlNode(
            [
                text("SELECT a"),
                ForEachSqlNode(IfSqlNode(text("#{v}"), "v > 5"), "vals", item="v", separator=","),
                text("FROM t"),
            ]
        ).apply(ctx)
        assert ctx.sql == "SELECT a FROM t"

    def test_separator_count(self, make_context):
        ctx = make_context({"vals": [1, 2, 3, 4, 5]})
        ForEachSqlNode(text("#{v}"), "vals", item="v", separator=" OR ").apply(ctx)
        assert ctx.sql.count(" OR ") == 4
        assert not ctx.sql.startswith(" OR")

    def test_mapping_binds_key_and_value(self, make_context):
        ctx = make_context({"m": {"a": 1, "b": 2}})
        ForEachSqlNode(TextSqlNode("${k}=#{v}"), "m", index="k", item="v", separator=" AND ").apply(ctx)
        assert ctx.sql == "a=#{__frch_v_0} AND b=#{__frch_v_1}"
        assert ctx.bindings["__frch_k_1"] == "b"

    def test_index_binding(self, make_context):
        ctx = make_context({"vals": ["x", "y"]})
        ForEachSqlNode(text("#{i}"), "vals", index="i", item="v", separator=",").apply(ctx)
        assert ctx.sql == "#{__frch_i_0},#{__frch_i_1}"
        assert ctx.bindings["__frch_i_1"] == 1

    def test_nested_loops_get_distinct_numbers(self, make_context):
        inner = ForEachSqlNode(text("#{c}"), "row", item="c", separator=",", open="(", close=")")
        outer = ForEachSqlNode(inner, "rows", item="row", separator=",")
        ctx = make_context({"rows": [[1, 2], [3]]})
        outer.apply(ctx)
        names = ctx.sql.replace("(", " ").replace(")", " ").replace(",", " ").split()
        assert len(names) == len(set(names)) == 3


class TestScenarios:
    def test_where_scenario(self, evaluator):
        tree = MixedSqlNode(
            [
                text("SELECT * FROM t"),
                WhereSqlNode(
                    MixedSqlNode(
                        [IfSqlNode(text("AND a=#{a}"), "a!=null"), IfSqlNode(text("AND b=#{b}"), "b!=null")]
                    )
                ),
            ]
        )
        bound = evaluate(tree, {"a": 5, "b": None}, evaluator=evaluator)
        assert bound.sql == "SELECT * FROM t WHERE a=?"
        assert [m.property for m in bound.parameter_mappings] == ["a"]
        assert bound.parameter_values() == [5]

    def test_foreach_scenario(self, evaluator):
        tree = ForEachSqlNode(text("#{v}"), "list", item="v", open="(", close=")", separator=",")
        bound = evaluate(tree, {"list": [1, 2, 3]}, evaluator=evaluator)
        assert bound.sql == "(?,?,?)"
        paths = [m.property for m in bound.parameter_mappings]
        assert len(set(paths)) == 3
        assert "v" not in paths
        assert [bound.resolve_value(m) for m in bound.parameter_mappings] == [1, 2, 3]

    def test_tree_is_reusable(self, evaluator):
        tree = MixedSqlNode([text("SELECT"), IfSqlNode(text("#{a}"), "a")])
        assert evaluate(tree, {"a": 1}, evaluator=evaluator).sql == "SELECT ?"
        assert evaluate(tree, {"a": 0}, evaluator=evaluator).sql == "SELECT"
