"""
Shared test fixtures for the orderflow library.

Usage:
    from tests.fixtures import (
        build_order,
        create_order,
        fast_workflow_config,
        make_item,
        make_items,
    )
"""

from tests.fixtures.orders import (
    build_order,
    create_order,
    fast_retry,
    fast_workflow_config,
    make_item,
    make_items,
)

__all__ = [
    "build_order",
    "create_order",
    "fast_retry",
    "fast_workflow_config",
    "make_item",
    "make_items",
]
