"""
Pytest configuration for SpacetimeDB SDK tests.

Shared connection constants are defined here so every test file can import them
instead of hardcoding URLs and database names. Integration tests run against an
already running SpacetimeDB server and are skipped when none answers.
"""

import copy
import os
import urllib.error
import urllib.request
from collections.abc import Generator
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Shared connection constants (import these in test files)
# ---------------------------------------------------------------------------
TEST_PORT = int(os.getenv("SPACETIMEDB_PORT", "3000"))
SPACETIMEDB_URL = os.getenv("SPACETIMEDB_URL", f"http://localhost:{TEST_PORT}")
SPACETIMEDB_DATABASE = os.getenv("SPACETIMEDB_DATABASE", "quickstart-chat")
SPACETIMEDB_TOKEN = os.getenv("SPACETIMEDB_TOKEN") or None


def is_spacetimedb_healthy(url: str = SPACETIMEDB_URL) -> bool:
    """Check if SpacetimeDB answers on /v1/ping."""
    try:
        req = urllib.request.Request(f"{url}/v1/ping", method="GET")
        with urllib.request.urlopen(req, timeout=2) as response:
            return response.status == 200
    except (urllib.error.URLError, TimeoutError, OSError):
        return False


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests when no server is reachable."""
    integration = [item for item in items if "integration" in item.keywords]
    if not integration or is_spacetimedb_healthy():
        return
    skip = pytest.mark.skip(reason=f"SpacetimeDB not available at {SPACETIMEDB_URL}")
    for item in integration:
        item.add_marker(skip)


@pytest.fixture(scope="session")
def spacetimedb_available() -> Generator[bool, None, None]:
    """Session-scoped fixture that indicates if SpacetimeDB is available."""
    yield is_spacetimedb_healthy()


# ---------------------------------------------------------------------------
# Module definition shared by schema, typed-mode and cache tests
# ---------------------------------------------------------------------------

MODULE_DEF_DOCUMENT: dict[str, Any] = {
    "typespace": {
        "types": [
            # 0: users row
            {
                "Product": {
                    "elements": [
                        {"name": {"some": "id"}, "algebraic_type": {"U64": []}},
                        {"name": {"some": "name"}, "algebraic_type": {"String": []}},
                        {"name": {"some": "online"}, "algebraic_type": {"Builtin": {"Bool": []}}},
                    ]
                }
            },
            # 1: messages row
            {
                "Product": {
                    "elements": [
                        {"name": {"some": "id"}, "algebraic_type": {"U64": []}},
                        {"name": {"some": "text"}, "algebraic_type": {"String": []}},
                        {"name": {"some": "tags"}, "algebraic_type": {"Array": {"String": []}}},
                    ]
                }
            },
            # 2: Status
            {
                "Sum": {
                    "variants": [
                        {"name": {"some": "Active"}, "algebraic_type": {"Product": {"elements": []}}},
                        {"name": {"some": "Banned"}, "algebraic_type": {"String": []}},
                    ]
                }
            },
        ]
    },
    "tables": [
        {
            "name": "users",
            "product_type_ref": 0,
            "primary_key": [0],
            "indexes": [],
            "constraints": [],
            "sequences": [],
            "schedule": {"none": []},
            "table_type": {"User": []},
            "table_access": {"Public": []},
        },
        {
            "name": "messages",
            "product_type_ref": 1,
            "primary_key": [0],
            "indexes": [],
            "constraints": [],
            "sequences": [],
            "schedule": {"some": {"reducer_name": "cleanup", "scheduled_at_column": 2}},
            "table_type": {"User": []},
            "table_access": {"Private": []},
        },
    ],
    "reducers": [
        {
            "name": "add_user",
            "params": {
                "elements": [
                    {"name": {"some": "name"}, "algebraic_type": {"String": []}},
                    {"name": {"some": "status"}, "algebraic_type": {"Ref": 2}},
                ]
            },
            "lifecycle": {"none": []},
        },
        {
            "name": "send_message",
            "params": {
                "elements": [
                    {"name": {"some": "text"}, "algebraic_type": {"String": []}},
                    {"name": {"some": "tags"}, "algebraic_type": {"Array": {"String": []}}},
                ]
            },
            "lifecycle": {"none": []},
        },
        {
            "name": "init",
            "params": {"elements": []},
            "lifecycle": {"some": {"Init": []}},
        },
    ],
    "types": [
        {"name": {"scope": ["chat"], "name": "Status"}, "ty": 2, "custom_ordering": True},
    ],
    "misc_exports": [],
    "row_level_security": [],
}


@pytest.fixture
def module_def_document() -> dict[str, Any]:
    """A fresh copy of the chat module definition document."""
    return copy.deepcopy(MODULE_DEF_DOCUMENT)
