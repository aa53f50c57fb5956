"""Tests for SQL grammars and the grammar registry."""

from __future__ import annotations

import pytest

from slice_engine.grammar import Grammar, GrammarRegistry, UnsupportedGrammarError
from slice_engine.grammar.base import double_quote
from slice_engine.models.errors import ConfigurationError
from slice_engine.models.schema import Granularity, Precision


@pytest.fixture
def registry() -> GrammarRegistry:
    return GrammarRegistry()


class TestGrammarRegistry:
    def test_builtin_grammars(self, registry: GrammarRegistry) -> None:
        assert registry.available() == [
            "clickhouse",
            "firebird",
            "mariadb",
            "mysql",
            "postgres",
            "singlestore",
            "sqlite",
            "sqlserver",
        ]

    def test_mariadb_shares_mysql_behaviour(self, registry: GrammarRegistry) -> None:
        assert registry.get("mariadb").time_bucket is registry.get("mysql").time_bucket

    def test_unknown_grammar(self, registry: GrammarRegistry) -> None:
        with pytest.raises(UnsupportedGrammarError, match="oracle") as exc_info:
            registry.get("oracle")
        assert "sqlite" in exc_info.value.available

    def test_register_custom_grammar(self) -> None:
        registry = GrammarRegistry(grammars=[])
        assert "duck" not in registry
        registry.register(Grammar("duck", double_quote, lambda c, g, p: f"trunc({c})"))
        assert "duck" in registry
        assert registry.get("duck").format_time_bucket('"d"', Granularity.DAY) == 'trunc("d")'

    def test_registries_are_independent(self) -> None:
        first = GrammarRegistry()
        first.register(Grammar("duck", double_quote, lambda c, g, p: c))
        assert "duck" not in GrammarRegistry()


class TestQuoting:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("sqlite", '"order date"'),
            ("mysql", "`order date`"),
            ("sqlserver", "[order date]"),
        ],
    )
    def test_quote_identifier(self, registry: GrammarRegistry, name: str, expected: str) -> None:
        assert registry.get(name).quote_identifier("order date") == expected

    def test_embedded_quotes_are_escaped(self, registry: GrammarRegistry) -> None:
        assert registry.get("postgres").quote_identifier('a"b') == '"a""b"'
        assert registry.get("clickhouse").quote_identifier("a`b") == "`a``b`"

    def test_star_is_not_quoted(self, registry: GrammarRegistry) -> None:
        assert registry.get("sqlserver").quote_identifier("*") == "*"


class TestTimeBuckets:
    def test_postgres_truncates(self, registry: GrammarRegistry) -> None:
        grammar = registry.get("postgres")
        assert grammar.format_time_bucket('"t"', Granularity.MONTH) == "DATE_TRUNC('month', \"t\")"

    def test_sqlite_week_starts_monday(self, registry: GrammarRegistry) -> None:
        grammar = registry.get("sqlite")
        assert (
            grammar.format_time_bucket('"t"', Granularity.WEEK)
            == "date(\"t\", 'weekday 0', '-6 days')"
        )

    def test_mysql_month(self, registry: GrammarRegistry) -> None:
        assert (
            registry.get("mysql").format_time_bucket("`t`", Granularity.MONTH)
            == "DATE_FORMAT(`t`, '%Y-%m-01')"
        )

    def test_clickhouse_week(self, registry: GrammarRegistry) -> None:
        assert registry.get("clickhouse").format_time_bucket("`t`", Granularity.WEEK) == "toMonday(`t`)"

    def test_sqlserver_day(self, registry: GrammarRegistry) -> None:
        assert (
            registry.get("sqlserver").format_time_bucket("[t]", Granularity.DAY)
            == "CAST([t] AS DATE)"
        )

    @pytest.mark.parametrize("name", ["mysql", "postgres", "sqlserver", "clickhouse", "firebird"])
    def test_date_column_by_day_is_unchanged(self, registry: GrammarRegistry, name: str) -> None:
        grammar = registry.get(name)
        assert grammar.format_time_bucket("d", Granularity.DAY, Precision.DATE) == "d"

    @pytest.mark.parametrize("granularity", list(Granularity))
    def test_every_grammar_covers_every_granularity(
        self, registry: GrammarRegistry, granularity: Granularity
    ) -> None:
        for name in registry.available():
            assert registry.get(name).format_time_bucket("t", granularity)

    def test_hour_on_date_column_is_rejected(self, registry: GrammarRegistry) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            registry.get("postgres").format_time_bucket("d", Granularity.HOUR, Precision.DATE)
        assert exc_info.value.codes == ["INVALID_GRANULARITY"]
