"""
Shared test fixtures for pytest.
"""

import pytest

from tests.fakes import FakeMongoClient, FakeNode


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Record env vars the CLIs mutate so they are restored after each test."""
    monkeypatch.setenv("DEFRA_KEYRING_SECRET", "")
    monkeypatch.setenv("LOG_LEVEL", "error")


@pytest.fixture
def mongo_client() -> FakeMongoClient:
    return FakeMongoClient()


@pytest.fixture
def fake_node() -> FakeNode:
    return FakeNode()
