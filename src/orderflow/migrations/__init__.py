"""
Database schema support for orderflow.

SQL schema templates for the tables used by the SQL backends.

Tables:
    - orders: Current order snapshot with its version
    - order_journeys: Append-only transition history
    - order_logs: Append-only action log
    - idempotency_keys: Command deduplication records
    - workflow_checkpoints: Durable workflow progress

Supported backends:
    - postgresql (default)
    - sqlite

Usage:
    from orderflow.migrations import get_schema, get_statements

    # One schema file
    orders_sql = get_schema("orders", backend="sqlite")

    # Everything, as a script (SQLite executescript)
    await connection.executescript(get_schema("all", backend="sqlite"))

    # Everything, one statement at a time (asyncpg runs one per execute)
    async with engine.begin() as conn:
        for statement in get_statements("all"):
            await conn.execute(text(statement))
"""

from pathlib import Path
from typing import Literal

SchemaName = Literal["orders", "idempotency", "workflows", "all"]

BackendName = Literal["postgresql", "sqlite"]

_SCHEMAS_DIR = Path(__file__).parent / "schemas"

# Creation order matters for foreign keys
_ALL_SCHEMAS: tuple[str, ...] = ("orders", "idempotency", "workflows")


def list_backends() -> list[str]:
    """List backends that ship schema files."""
    return sorted(p.name for p in _SCHEMAS_DIR.iterdir() if p.is_dir())


def list_schemas(backend: BackendName = "postgresql") -> list[str]:
    """
    List the schema names available for a backend.

    Example:
        >>> list_schemas("sqlite")
        ['idempotency', 'orders', 'workflows']
    """
    backend_dir = _SCHEMAS_DIR / backend
    if not backend_dir.exists():
        return []
    return sorted(p.stem for p in backend_dir.glob("*.sql"))


def get_schema(name: SchemaName = "all", backend: BackendName = "postgresql") -> str:
    """
    Load a SQL schema by name and backend.

    Args:
        name: "orders", "idempotency", "workflows" or "all"
        backend: "postgresql" (default) or "sqlite"

    Returns:
        SQL schema definition as a string

    Raises:
        ValueError: If the backend or schema is unknown
    """
    backend_dir = _SCHEMAS_DIR / backend
    if not backend_dir.is_dir():
        raise ValueError(f"Unknown backend '{backend}'. Available backends: {list_backends()}")

    if name == "all":
        return "\n".join(get_schema(part, backend) for part in _ALL_SCHEMAS)  # type: ignore[arg-type]

    path = backend_dir / f"{name}.sql"
    if not path.exists():
        raise ValueError(
            f"Schema '{name}' is not available for backend '{backend}'. "
            f"Available schemas: {list_schemas(backend)}"
        )
    return path.read_text()


def get_statements(name: SchemaName = "all", backend: BackendName = "postgresql") -> list[str]:
    """
    Split a schema into individual statements with comments removed.

    Drivers that only accept one statement per call (asyncpg) need this.
    """
    statements = []
    for chunk in get_schema(name, backend).split(";"):
        lines = [line for line in chunk.splitlines() if not line.strip().startswith("--")]
        statement = "\n".join(lines).strip()
        if statement:
            statements.append(statement)
    return statements


__all__ = [
    "SchemaName",
    "BackendName",
    "get_schema",
    "get_statements",
    "list_schemas",
    "list_backends",
]
