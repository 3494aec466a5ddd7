"""
Tests for unknown-column error detection.
"""

import pytest

from app.domain.query.error_classifier import is_unknown_column_error, rules_for, ENGINE_RULES


@pytest.mark.parametrize("engine,message", [
    ("postgres", 'column "region" does not exist'),
    ("postgresql", 'ERROR:  column s.region does not exist\nLINE 1: ...'),
    ("mysql", "1054 (42S22): Unknown column 'region' in 'where clause'"),
    ("mariadb", "Unknown column 'region' in 'where clause'"),
    ("sqlite", "no such column: region"),
    ("duckdb", 'Binder Error: Referenced column "region" not found in FROM clause!'),
    ("memory", "Unknown column 'region' in table 'sales'"),
    ("file", "Unknown column 'region' in table 'sales'"),
])
def test_engine_specific_messages(engine, message):
    assert is_unknown_column_error(message, engine)


@pytest.mark.parametrize("engine,message", [
    ("postgres", 'relation "sales" does not exist'),
    ("postgres", "permission denied for table sales"),
    ("mysql", "Table 'db.sales' doesn't exist"),
    ("sqlite", "no such table: sales"),
    ("memory", "Table 'sales' not found. Available tables: none"),
])
def test_other_failures_are_not_column_errors(engine, message):
    assert not is_unknown_column_error(message, engine)


def test_rules_are_engine_scoped():
    assert not is_unknown_column_error("no such column: region", "postgres")


def test_unknown_engine_uses_every_rule():
    assert is_unknown_column_error("no such column: region", "clickhouse")
    assert is_unknown_column_error('column "region" does not exist')
    assert len(rules_for(None)) == sum(len(rules) for rules in ENGINE_RULES.values())


@pytest.mark.parametrize("message", [None, ""])
def test_empty_message(message):
    assert not is_unknown_column_error(message, "sqlite")
