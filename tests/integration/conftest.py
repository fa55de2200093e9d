"""Integration-test conftest — live sandbox fixtures.

Integration tests require:
    SANDPIPER_TEST_INTEGRATION=1   (set in shell before running)
    E2B_API_KEY                    for the E2B backend tests

Run with:
    SANDPIPER_TEST_INTEGRATION=1 pytest tests/integration/ -v
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from sandpiper.providers.factory import ProviderFactory
from sandpiper.sandbox.registry import SandboxRegistry


@pytest_asyncio.fixture
async def e2b_registry():
    """A registry on the E2B backend; every sandbox it created is killed afterwards."""
    registry = SandboxRegistry(ProviderFactory(backend="e2b"))
    yield registry
    await registry.terminate_all()
