"""Root conftest — shared pytest markers and global settings.

Markers
-------
unit        fast, no network, pure logic (local subprocesses allowed)
integration requires a live sandbox backend (set SANDPIPER_TEST_INTEGRATION=1)
slow        expected to take > 5 seconds
"""

from __future__ import annotations

import os
import pytest


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast, no network tests")
    config.addinivalue_line("markers", "integration: requires a live sandbox backend")
    config.addinivalue_line("markers", "slow: test is expected to take > 5 s")


# ── Skip guards ───────────────────────────────────────────────────────────────

requires_integration = pytest.mark.skipif(
    not os.getenv("SANDPIPER_TEST_INTEGRATION"),
    reason="Set SANDPIPER_TEST_INTEGRATION=1 to run integration tests",
)

requires_e2b = pytest.mark.skipif(
    not (os.getenv("SANDPIPER_TEST_INTEGRATION") and os.getenv("E2B_API_KEY")),
    reason="Requires SANDPIPER_TEST_INTEGRATION=1 and E2B_API_KEY",
)
