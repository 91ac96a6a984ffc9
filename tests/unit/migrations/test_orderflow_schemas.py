"""
Unit tests for the schema loading helpers.

Tests for:
- Listing backends and schemas
- Loading single and combined schemas
- Splitting schemas into statements
"""

import pytest

from orderflow.migrations import get_schema, get_statements, list_backends, list_schemas


class TestListing:
    def test_backends(self):
        assert list_backends() == ["postgresql", "sqlite"]

    @pytest.mark.parametrize("backend", ["postgresql", "sqlite"])
    def test_schemas(self, backend):
        assert list_schemas(backend) == ["idempotency", "orders", "workflows"]

    def test_unknown_backend_has_no_schemas(self):
        assert list_schemas("oracle") == []  # type: ignore[arg-type]


class TestGetSchema:
    """Tests for get_schema."""

    @pytest.mark.parametrize("backend", ["postgresql", "sqlite"])
    def test_orders_schema(self, backend):
        sql = get_schema("orders", backend)

        assert "CREATE TABLE IF NOT EXISTS orders" in sql
        assert "order_journeys" in sql
        assert "order_logs" in sql

    @pytest.mark.parametrize("backend", ["postgresql", "sqlite"])
    def test_all_creates_every_table(self, backend):
        sql = get_schema("all", backend)

        for table in (
            "orders",
            "order_journeys",
            "order_logs",
            "idempotency_keys",
            "workflow_checkpoints",
        ):
            assert f"CREATE TABLE IF NOT EXISTS {table}" in sql

    def test_orders_created_before_dependents(self):
        sql = get_schema("all")

        assert sql.index("TABLE IF NOT EXISTS orders ") < sql.index("idempotency_keys")

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown backend 'oracle'"):
            get_schema("orders", "oracle")  # type: ignore[arg-type]

    def test_unknown_schema(self):
        with pytest.raises(ValueError, match="Available schemas"):
            get_schema("outbox", "sqlite")  # type: ignore[arg-type]


class TestGetStatements:
    def test_statements_have_no_comments_or_blanks(self):
        statements = get_statements("all", "postgresql")

        assert statements
        for statement in statements:
            assert statement.strip() == statement
            assert not any(line.strip().startswith("--") for line in statement.splitlines())

    def test_one_create_per_table(self):
        statements = get_statements("orders", "sqlite")

        creates = [s for s in statements if s.startswith("CREATE TABLE")]
        assert len(creates) == 3
