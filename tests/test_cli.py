"""CLI tests via typer's CliRunner.

``runs`` and ``replay`` are pointed at a SQLite file with ``--database-url``;
the gateway call made by ``replay`` is mocked with respx.
"""

import asyncio
import json

import httpx
import pytest
import respx
from typer.testing import CliRunner

from autoflow.actions.gateway import InMemoryGateway
from autoflow.cli.main import app
from autoflow.config import config as process_config
from autoflow.core.runtime import build_runtime
from autoflow.db.database import init_db, make_engine, make_session_factory
from autoflow.db.repository import Repository
from autoflow.exceptions import GatewayUnavailable
from autoflow.types import RunStatus
from autoflow.version import __version__
from autoflow.workflows.editor import load_workflow_file

from builders import SEED_FILE, TENANT, event

runner = CliRunner()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"


def _seed_failed_run(cfg, db_url):
    """Run the support workflow once against a gateway that always fails."""

    async def go():
        engine = make_engine(db_url, echo=False)
        await init_db(engine)
        gateway = InMemoryGateway()
        gateway.failures.extend([GatewayUnavailable("503")] * 10)
        rt = build_runtime(
            cfg, repository=Repository(make_session_factory(engine)), gateway=gateway, callbacks=[]
        )
        for version in load_workflow_file(SEED_FILE, TENANT):
            if version.workflow_id == "wf-support":
                await rt.workflow_manager.publish_version(version)
        [record] = await rt.coordinator.handle_event(event("urgent help", event_id="evt-cli"))
        await engine.dispose()
        return record

    return asyncio.run(go())


def test_version_flag():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


# ── validate ─────────────────────────────────────────────────────────────────

def test_validate_seed_file():
    result = runner.invoke(app, ["validate", str(SEED_FILE)])
    assert result.exit_code == 0, result.output
    assert "✓ Welcome Automation" in result.output
    assert "✓ Lead Qualification" in result.output


def test_validate_invalid_graph(tmp_path):
    path = tmp_path / "loop.json"
    path.write_text(json.dumps({
        "name": "Loop",
        "nodes": [
            {"id": "t", "type": "trigger"},
            {"id": "a", "type": "message", "data": {"config": {"message": "a"}}},
        ],
        "edges": [
            {"id": "e1", "source": "t", "target": "a"},
            {"id": "e2", "source": "a", "target": "t"},
        ],
    }), encoding="utf-8")
    result = runner.invoke(app, ["validate", str(path)])
    assert result.exit_code == 1
    assert "✗ Loop" in result.output


def test_validate_malformed_file(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"nodes": []}), encoding="utf-8")
    result = runner.invoke(app, ["validate", str(path)])
    assert result.exit_code == 1
    assert "Malformed" in result.output


def test_validate_missing_file(tmp_path):
    result = runner.invoke(app, ["validate", str(tmp_path / "nope.json")])
    assert result.exit_code != 0


# ── simulate ─────────────────────────────────────────────────────────────────

def test_simulate_urgent_support():
    result = runner.invoke(app, ["simulate", str(SEED_FILE), "--text", "I need urgent help"])
    assert result.exit_code == 0, result.output
    assert "wf-support" in result.output
    assert "COMPLETED" in result.output
    assert "We understand this is urgent" in result.output
    assert "Contact tags:" in result.output


def test_simulate_hot_lead_tags_contact():
    result = runner.invoke(app, ["simulate", str(SEED_FILE), "-t", "interested in a demo", "--tag", "vip"])
    assert result.exit_code == 0, result.output
    assert "hot_lead" in result.output
    assert "vip" in result.output


def test_simulate_no_match(tmp_path):
    payloads = json.loads(SEED_FILE.read_text(encoding="utf-8"))["workflows"]
    path = tmp_path / "support.json"
    path.write_text(json.dumps(payloads[1]), encoding="utf-8")
    result = runner.invoke(app, ["simulate", str(path), "--text", "good morning"])
    assert result.exit_code == 0
    assert "No workflow matched this message." in result.output


# ── runs / replay ────────────────────────────────────────────────────────────

def test_runs_empty(db_url):
    result = runner.invoke(app, ["runs", "--tenant", TENANT, "--database-url", db_url])
    assert result.exit_code == 0, result.output
    assert "No runs" in result.output


def test_runs_lists_failed_run(config, db_url):
    record = _seed_failed_run(config, db_url)
    assert record.status == RunStatus.FAILED

    result = runner.invoke(app, ["runs", "--tenant", TENANT, "--database-url", db_url])
    assert result.exit_code == 0, result.output
    assert "failed" in result.output

    result = runner.invoke(
        app, ["runs", "--tenant", TENANT, "--status", "completed", "--database-url", db_url]
    )
    assert "No runs" in result.output


def test_replay_failed_run(config, db_url):
    record = _seed_failed_run(config, db_url)

    with respx.mock:
        route = respx.post(f"{process_config.gateway_url.rstrip('/')}/messages").mock(
            return_value=httpx.Response(200, json={"message_id": "wamid.replayed"})
        )
        result = runner.invoke(app, ["replay", record.key, "--database-url", db_url])

    assert result.exit_code == 0, result.output
    assert "COMPLETED" in result.output
    assert route.call_count == 1
    assert route.calls.last.request.headers["Idempotency-Key"] == f"{record.key}:message_2"


def test_replay_unknown_run(db_url):
    result = runner.invoke(app, ["replay", "wf-x:v1:+1:evt-none", "--database-url", db_url])
    assert result.exit_code == 1
    assert "Cannot replay" in result.output


def test_replay_malformed_key(db_url):
    result = runner.invoke(app, ["replay", "garbage", "--database-url", db_url])
    assert result.exit_code == 1
    assert "Cannot replay" in result.output
