"""
Tests for the in-memory table store.
"""

import pytest

from app.errors import ErrorCode, QueryGateError
from app.infrastructure.memory.store import TableStore, get_table_store, infer_column_type, infer_schema


class TestTypeInference:

    @pytest.mark.parametrize("values,expected", [
        ([1, 2.5, None], "number"),
        ([True, False], "boolean"),
        ([1, True], "text"),
        (["2024-01-01", "2024-02-01T10:00:00Z", None], "date"),
        (["2024-01-01", "soon"], "text"),
        (["a", 1], "text"),
        ([None, None], "text"),
        ([], "text"),
        (["1", "2.5", "-3", " 4e2 "], "number"),
        (["1", 2, None], "number"),
        (["true", "false", True], "boolean"),
        (["True", "false"], "text"),
        (["", None], "text"),
        (["", "7"], "number"),
        (["", "true"], "boolean"),
        (["1", "abc"], "text"),
        (["1", "true"], "text"),
        (["nan", "1"], "text"),
    ])
    def test_infer_column_type(self, values, expected):
        assert infer_column_type(values) == expected

    def test_schema_column_order_and_nullability(self):
        schema = infer_schema("t", [{"b": 1, "a": "x"}, {"a": "y", "c": None}])
        assert schema.column_names == ["b", "a", "c"]
        nullable = {c.name: c.nullable for c in schema.columns}
        assert nullable == {"b": True, "a": False, "c": True}
        assert schema.row_count == 2

    def test_empty_string_counts_as_null(self):
        schema = infer_schema("t", [{"qty": "3", "note": ""}, {"qty": "", "note": "x"}, {"qty": "5", "note": "y"}])
        columns = {c.name: (c.type, c.nullable) for c in schema.columns}
        assert columns == {"qty": ("number", True), "note": ("text", True)}

    def test_string_rows_keep_raw_values(self, store):
        schema = store.add_table("csv", [{"amount": "10", "paid": "true"}, {"amount": "2.5", "paid": "false"}])
        assert [c.type for c in schema.columns] == ["number", "boolean"]
        assert store.get_table("csv").rows[0] == {"amount": "10", "paid": "true"}


class TestTableStore:

    def test_add_returns_schema(self, store, sales_rows):
        schema = store.add_table("sales", sales_rows)
        assert schema.to_dict() == {
            "name": "sales",
            "columns": [
                {"name": "id", "type": "number", "nullable": False},
                {"name": "region", "type": "text", "nullable": False},
                {"name": "product", "type": "text", "nullable": False},
                {"name": "amount", "type": "number", "nullable": True},
                {"name": "order_date", "type": "date", "nullable": False},
                {"name": "active", "type": "boolean", "nullable": False},
            ],
            "rowCount": 4,
        }

    def test_lookup_is_case_insensitive(self, sales_store):
        assert sales_store.has_table("SALES")
        assert sales_store.get_table("Sales").name == "sales"
        assert sales_store.find_table("missing") is None

    def test_missing_columns_are_filled_with_none(self, store):
        store.add_table("t", [{"a": 1}, {"b": 2}])
        assert list(store.get_table("t").rows) == [{"a": 1, "b": None}, {"a": None, "b": 2}]

    def test_replace_by_name(self, sales_store):
        sales_store.add_table("Sales", [{"x": 1}])
        assert sales_store.table_names() == ["Sales"]
        assert sales_store.get_schema("sales").column_names == ["x"]

    def test_get_missing_table(self, store):
        with pytest.raises(QueryGateError) as exc_info:
            store.get_table("nope")
        assert exc_info.value.code == ErrorCode.ERR_TABLE_NOT_FOUND
        assert exc_info.value.status_code == 404

    @pytest.mark.parametrize("name,rows", [
        ("bad name", [{"a": 1}]),
        ("1table", [{"a": 1}]),
        ("t", "not rows"),
        ("t", [{"a": 1}, ["not", "a", "row"]]),
    ])
    def test_rejects_bad_input(self, store, name, rows):
        with pytest.raises(QueryGateError) as exc_info:
            store.add_table(name, rows)
        assert exc_info.value.code == ErrorCode.ERR_TABLE_DATA_INVALID

    def test_remove_and_reset(self, sales_store):
        sales_store.add_table("other", [{"a": 1}])
        assert sales_store.remove_table("OTHER")
        assert not sales_store.remove_table("other")
        assert [s.name for s in sales_store.get_schemas()] == ["sales"]

        sales_store.reset()
        assert sales_store.get_schemas() == []

    def test_snapshot_survives_reload(self, sales_store):
        before = sales_store.get_table("sales")
        sales_store.add_table("sales", [{"id": 9}])
        assert len(before.rows) == 4
        assert len(sales_store.get_table("sales").rows) == 1


def test_global_store_is_shared():
    assert get_table_store() is get_table_store()
    assert isinstance(get_table_store(), TableStore)
