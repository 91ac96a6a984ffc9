"""
Integration tests for the orderflow library.

These tests run the full stack (service, idempotency guard, workflow
runner) against file-backed SQLite databases and are skipped when
aiosqlite is not installed.

Run integration tests:
    pytest tests/integration/ -v
"""
