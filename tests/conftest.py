"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

# litellm fetches its model cost map over the network at import time; use the
# bundled copy so the suite runs offline.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

import pytest
from fakes import FakeClock, FakeProvider

from agentmem.config import MemoryConfig, StoreCfg
from agentmem.db.store import IndexStore


@pytest.fixture
def store(tmp_path):
    """IndexStore on a file in tmp_path, closed after the test."""
    s = IndexStore.open(tmp_path / "index.sqlite")
    yield s
    s.close()


@pytest.fixture
def vec_store(store):
    """IndexStore whose dense sub-index is usable (skips if sqlite-vec cannot load)."""
    if not store.vector_available:
        pytest.skip("sqlite-vec extension not loadable in this interpreter")
    return store


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def workspace(tmp_path) -> Path:
    ws = tmp_path / "workspace"
    (ws / "memory").mkdir(parents=True)
    return ws


@pytest.fixture
def memory_cfg(tmp_path, workspace) -> MemoryConfig:
    """Config rooted at *workspace* with indexes under tmp_path/index/."""
    return MemoryConfig(
        workspace=str(workspace),
        store=StoreCfg(path=str(tmp_path / "index" / "{agent_id}.sqlite")),
    )
