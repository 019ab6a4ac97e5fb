"""Test fixtures: fast config, seed workflows, in-memory runtime.

All tests should use these fixtures for consistency.
"""

import pytest

from autoflow.config import AutoflowConfig
from autoflow.core.runtime import build_runtime
from autoflow.workflows.editor import load_workflow_file

from builders import SEED_FILE, TENANT


@pytest.fixture
def config():
    """Test configuration: no retry sleeps, short budgets."""
    return AutoflowConfig(
        debug=True,
        database_url="sqlite+aiosqlite:///:memory:",
        run_timeout_seconds=5.0,
        trigger_match_timeout_seconds=1.0,
        node_retry_max_attempts=3,
        node_retry_base_delay=0.0,
        node_retry_max_delay=0.0,
        node_retry_jitter=0.0,
    )


@pytest.fixture
def seed_versions():
    """Welcome, Customer Support and Lead Qualification, as the editor saves them."""
    return load_workflow_file(SEED_FILE, TENANT)


@pytest.fixture
def seed_by_name(seed_versions):
    return {v.name: v for v in seed_versions}


@pytest.fixture
def runtime(config):
    """Fully in-memory engine: InMemoryGateway, InMemoryStore, no callbacks."""
    return build_runtime(config, callbacks=[])
