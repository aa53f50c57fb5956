"""Time-bucket functions of the built-in grammars."""

from __future__ import annotations

from slice_engine.grammar.base import (
    Grammar,
    backtick_quote,
    bracket_quote,
    double_quote,
)
from slice_engine.models.schema import Granularity, Precision


def mysql_time_bucket(column: str, granularity: Granularity, precision: Precision) -> str:
    match granularity:
        case Granularity.HOUR:
            return f"DATE_FORMAT({column}, '%Y-%m-%d %H:00:00')"
        case Granularity.DAY:
            return column if precision == Precision.DATE else f"DATE({column})"
        case Granularity.WEEK:
            return f"DATE_FORMAT(DATE_SUB({column}, INTERVAL WEEKDAY({column}) DAY), '%Y-%m-%d')"
        case Granularity.MONTH:
            return f"DATE_FORMAT({column}, '%Y-%m-01')"
        case Granularity.YEAR:
            return f"DATE_FORMAT({column}, '%Y-01-01')"


def singlestore_time_bucket(column: str, granularity: Granularity, precision: Precision) -> str:
    match granularity:
        case Granularity.HOUR:
            return f"DATE_FORMAT({column}, '%Y-%m-%d %H:00:00')"
        case Granularity.DAY:
            return column if precision == Precision.DATE else f"DATE({column})"
        case Granularity.WEEK:
            return f"DATE_FORMAT({column}, '%Y-%u')"
        case Granularity.MONTH:
            return f"DATE_FORMAT({column}, '%Y-%m')"
        case Granularity.YEAR:
            return f"YEAR({column})"


def postgres_time_bucket(column: str, granularity: Granularity, precision: Precision) -> str:
    if granularity == Granularity.DAY and precision == Precision.DATE:
        return column
    return f"DATE_TRUNC('{granularity.value}', {column})"


def sqlite_time_bucket(column: str, granularity: Granularity, precision: Precision) -> str:
    match granularity:
        case Granularity.HOUR:
            return f"strftime('%Y-%m-%d %H:00:00', {column})"
        case Granularity.DAY:
            return f"date({column})"
        case Granularity.WEEK:
            return f"date({column}, 'weekday 0', '-6 days')"
        case Granularity.MONTH:
            return f"strftime('%Y-%m-01', {column})"
        case Granularity.YEAR:
            return f"strftime('%Y-01-01', {column})"


def sqlserver_time_bucket(column: str, granularity: Granularity, precision: Precision) -> str:
    if granularity == Granularity.DAY:
        return column if precision == Precision.DATE else f"CAST({column} AS DATE)"
    unit = granularity.value
    return f"DATEADD({unit}, DATEDIFF({unit}, 0, {column}), 0)"


def clickhouse_time_bucket(column: str, granularity: Granularity, precision: Precision) -> str:
    match granularity:
        case Granularity.HOUR:
            return f"toStartOfHour({column})"
        case Granularity.DAY:
            return column if precision == Precision.DATE else f"toStartOfDay({column})"
        case Granularity.WEEK:
            return f"toMonday({column})"
        case Granularity.MONTH:
            return f"toStartOfMonth({column})"
        case Granularity.YEAR:
            return f"toStartOfYear({column})"


def firebird_time_bucket(column: str, granularity: Granularity, precision: Precision) -> str:
    match granularity:
        case Granularity.HOUR:
            return (
                f"CAST(CAST({column} AS DATE) || ' ' || EXTRACT(HOUR FROM {column}) "
                "|| ':00:00' AS TIMESTAMP)"
            )
        case Granularity.DAY:
            return column if precision == Precision.DATE else f"CAST({column} AS DATE)"
        case Granularity.WEEK:
            return f"DATEADD(day, -EXTRACT(WEEKDAY FROM {column}), CAST({column} AS DATE))"
        case Granularity.MONTH:
            return (
                f"CAST(EXTRACT(YEAR FROM {column}) || '-' || EXTRACT(MONTH FROM {column}) "
                "|| '-01' AS DATE)"
            )
        case Granularity.YEAR:
            return f"CAST(EXTRACT(YEAR FROM {column}) || '-01-01' AS DATE)"


def default_grammars() -> list[Grammar]:
    return [
        Grammar("mysql", backtick_quote, mysql_time_bucket),
        Grammar("mariadb", backtick_quote, mysql_time_bucket),
        Grammar("singlestore", backtick_quote, singlestore_time_bucket),
        Grammar("postgres", double_quote, postgres_time_bucket),
        Grammar("sqlite", double_quote, sqlite_time_bucket),
        Grammar("sqlserver", bracket_quote, sqlserver_time_bucket),
        Grammar("clickhouse", backtick_quote, clickhouse_time_bucket),
        Grammar("firebird", double_quote, firebird_time_bucket),
    ]
