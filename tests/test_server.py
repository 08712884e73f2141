"""Tests for MCP server assembly per mode and the tool handlers."""

import asyncio
import json
import tempfile
from pathlib import Path

import pytest
from mcp.shared.memory import create_connected_server_and_client_session

from task_bridge.config import Config
from task_bridge.mcp.server import create_server

SHARED = {
    "list_tasks", "get_task", "get_history", "get_state", "update_state", "log_decision",
    "sync", "get_events", "save_context", "load_context", "list_sessions", "load_task_context",
}
ARCHITECT = {
    "push_task", "push_tasks", "update_task", "cancel_task",
    "respond_clarification", "get_clarifications",
}
EXECUTOR = {
    "pull_task", "claim_task", "report_progress", "complete_task",
    "fail_task", "request_clarification", "resume_task",
}


@pytest.fixture
def tmp_project():
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


def _names(items) -> set[str]:
    return {item.name for item in items}


def _tools(config: Config) -> set[str]:
    return _names(asyncio.run(create_server(config).list_tools()))


def _prompts(config: Config) -> set[str]:
    return _names(asyncio.run(create_server(config).list_prompts()))


class TestModes:
    def test_architect_mode(self, tmp_project):
        tools = _tools(Config(project_path=tmp_project, mode="architect"))
        assert tools == SHARED | ARCHITECT

    def test_executor_mode(self, tmp_project):
        tools = _tools(Config(project_path=tmp_project, mode="executor"))
        assert tools == SHARED | EXECUTOR

    def test_full_mode(self, tmp_project):
        tools = _tools(Config(project_path=tmp_project, mode="full"))
        assert tools == SHARED | ARCHITECT | EXECUTOR

    def test_prompts_follow_mode(self, tmp_project):
        assert _prompts(Config(project_path=tmp_project, mode="architect")) == {"plan_work", "review_queue"}
        assert _prompts(Config(project_path=tmp_project, mode="executor")) == {"start_session", "handle_answer"}

    def test_server_name(self, tmp_project):
        server = create_server(Config(project_path=tmp_project, mode="executor"))
        assert server.name == "task-bridge-executor"


class TestConfig:
    def test_default_db_path(self, tmp_project):
        config = Config(project_path=tmp_project)
        assert config.db_path == tmp_project / ".task_bridge" / "bridge.db"
        assert config.agent_role == "architect"

    def test_executor_role(self, tmp_project):
        assert Config(project_path=tmp_project, mode="executor").agent_role == "executor"

    def test_from_env(self, tmp_project, monkeypatch):
        monkeypatch.setenv("BRIDGE_PROJECT_PATH", str(tmp_project))
        monkeypatch.setenv("BRIDGE_DB_PATH", "data/bridge.db")
        monkeypatch.setenv("BRIDGE_MODE", "EXECUTOR")
        monkeypatch.setenv("BRIDGE_BUSY_TIMEOUT_MS", "250")
        config = Config.from_env()
        assert config.db_path == tmp_project.resolve() / "data" / "bridge.db"
        assert config.mode == "executor"
        assert config.busy_timeout_ms == 250

    def test_unknown_mode_falls_back(self, monkeypatch):
        monkeypatch.setenv("BRIDGE_MODE", "wizard")
        assert Config.from_env().mode == "full"


async def _call(session, name: str, **arguments) -> dict:
    result = await session.call_tool(name, arguments)
    return json.loads(result.content[0].text)


def _run(config: Config, scenario):
    """Run ``scenario(session)`` against an in-memory client connected to the server."""

    async def main():
        server = create_server(config)
        async with create_connected_server_and_client_session(server._mcp_server) as session:
            return await scenario(session)

    return asyncio.run(main())


@pytest.fixture
def full_config(tmp_project):
    return Config(project_path=tmp_project, mode="full")


class TestArchitectTools:
    def test_push_task_reports_queue_position(self, full_config):
        async def scenario(session):
            first = await _call(session, "push_task", title="Docs", instructions="Write", acceptance_criteria=[])
            urgent = await _call(
                session, "push_task",
                title="Hotfix", instructions="Fix", acceptance_criteria=["fixed"], priority="critical",
            )
            moved = await _call(session, "get_task", task_id=first["task_id"])
            return first, urgent, moved

        first, urgent, moved = _run(full_config, scenario)
        assert first["queue_position"] == 1
        assert first["status"] == "queued"
        assert urgent["queue_position"] == 1
        assert moved["queue_position"] == 2

    def test_push_task_invalid_priority_is_error_dict(self, full_config):
        async def scenario(session):
            return await _call(
                session, "push_task", title="T", instructions="I", acceptance_criteria=[], priority="urgent"
            )

        result = _run(full_config, scenario)
        assert result["error_type"] == "validation_error"
        assert result["retryable"] is False

    def test_push_tasks_sequential_renames_assign_to(self, full_config):
        async def scenario(session):
            pushed = await _call(
                session, "push_tasks",
                tasks=[
                    {"title": "Schema", "instructions": "Create tables", "assign_to": "executor"},
                    {"title": "API", "instructions": "Add endpoints", "assign_to": "executor"},
                ],
                execution_order="sequential",
            )
            second = await _call(session, "get_task", task_id=pushed["task_ids"][1])
            return pushed, second

        pushed, second = _run(full_config, scenario)
        assert pushed["count"] == 2
        assert pushed["dependencies_created"] is True
        assert second["task"]["depends_on"] == [pushed["task_ids"][0]]
        assert second["task"]["assigned_to"] == "executor"


class TestExecutorTools:
    def test_second_claim_returns_current_status(self, full_config):
        async def scenario(session):
            pushed = await _call(session, "push_task", title="T", instructions="I", acceptance_criteria=[])
            first = await _call(session, "claim_task", task_id=pushed["task_id"])
            second = await _call(session, "claim_task", task_id=pushed["task_id"])
            return first, second

        first, second = _run(full_config, scenario)
        assert first["success"] is True
        assert first["task"]["status"] == "claimed"
        assert second["error_type"] == "invalid_state_transition"
        assert second["current_status"] == "claimed"
        assert second["retryable"] is False

    def test_complete_returns_next_task(self, full_config):
        async def scenario(session):
            a = await _call(session, "push_task", title="A", instructions="I", acceptance_criteria=[], priority="high")
            b = await _call(session, "push_task", title="B", instructions="I", acceptance_criteria=[])
            await _call(session, "claim_task", task_id=a["task_id"])
            await _call(session, "report_progress", task_id=a["task_id"], status="in_progress", message="Going")
            done = await _call(
                session, "complete_task",
                task_id=a["task_id"], success=True, summary="Did A", files_modified=["a.py"],
            )
            last = await _call(session, "claim_task", task_id=b["task_id"])
            await _call(session, "complete_task", task_id=b["task_id"], success=True, summary="Did B")
            return b, done, last

        b, done, last = _run(full_config, scenario)
        assert done["success"] is True
        assert done["next_task"]["id"] == b["task_id"]
        assert done["next_task"]["title"] == "B"
        assert last["success"] is True

    def test_complete_with_empty_queue(self, full_config):
        async def scenario(session):
            pushed = await _call(session, "push_task", title="Only", instructions="I", acceptance_criteria=[])
            await _call(session, "claim_task", task_id=pushed["task_id"])
            return await _call(session, "complete_task", task_id=pushed["task_id"], success=True, summary="ok")

        assert _run(full_config, scenario)["next_task"] is None

    def test_resume_returns_clarification_answers(self, full_config):
        async def scenario(session):
            pushed = await _call(session, "push_task", title="Auth", instructions="I", acceptance_criteria=[])
            task_id = pushed["task_id"]
            await _call(session, "claim_task", task_id=task_id)
            asked = await _call(
                session, "request_clarification",
                task_id=task_id, question="JWT or sessions?", options=["jwt", "sessions"],
            )
            early = await _call(session, "resume_task", task_id=task_id)
            await _call(session, "respond_clarification", clarification_id=asked["request_id"], response="jwt")
            resumed = await _call(session, "resume_task", task_id=task_id)
            return asked, early, resumed

        asked, early, resumed = _run(full_config, scenario)
        assert asked["status"] == "blocked"
        assert early["error_type"] == "validation_error"
        assert resumed["status"] == "in_progress"
        assert resumed["clarifications"][0]["id"] == asked["request_id"]
        assert resumed["clarifications"][0]["response"] == "jwt"


class TestSharedTools:
    def test_invalid_since_is_error_dict(self, full_config):
        async def scenario(session):
            return await _call(session, "get_events", since="not a date")

        assert _run(full_config, scenario)["error_type"] == "validation_error"
