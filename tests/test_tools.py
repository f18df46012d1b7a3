"""Tests for the MCP run tools."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from maker_orchestrator.config import Config
from maker_orchestrator.tools.maker import register_maker_tools

from .helpers import ScriptedWorker, capture_tools

IDEA = "Build a small todo app"
PLAN = json.dumps({"subtasks": ["Write API", "Write UI"], "rationale": "Two halves", "isMinimal": False})
ANSWERS = {
	"Write API": ["Expose create and list endpoints."] * 3,
	"Write UI": ["A single page with a list of todos."] * 3,
}


@pytest.fixture
def config(tmp_path: Path) -> Config:
	config = Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data", poll_interval=0, max_polls=3)
	config.ensure_dirs()
	return config


@pytest.fixture
def tools(config):
	return capture_tools(config, register_maker_tools)


def test_all_tools_registered(tools):
	assert set(tools) == {"maker_run", "maker_resume", "maker_status", "maker_get_tree"}


class TestMakerRun:
	"""Tests for maker_run."""

	@pytest.mark.asyncio
	async def test_run_reports_success(self, tools, config):
		worker = ScriptedWorker(answers=ANSWERS, decompositions={IDEA: PLAN})
		with patch("maker_orchestrator.tools.maker.CLIWorker", return_value=worker):
			result = json.loads(await tools["maker_run"](idea=IDEA, repo="me/todo"))

		assert result["success"] is True
		assert result["root_status"] == "completed"
		assert "Expose create and list endpoints." in result["result"]
		assert config.state_file.exists()
		assert all(context.repo == "me/todo" for context in worker.contexts)

	@pytest.mark.asyncio
	async def test_overrides_reach_the_run(self, tools, config):
		worker = ScriptedWorker(answers=ANSWERS, decompositions={IDEA: PLAN})
		with patch("maker_orchestrator.tools.maker.CLIWorker", return_value=worker) as cli_worker:
			await tools["maker_run"](idea=IDEA, max_depth=0, threshold=3, model="sonnet")

		assert cli_worker.call_args.kwargs["model"] == "sonnet"
		status = json.loads(await tools["maker_status"]())
		assert status["config"]["max_recursion_depth"] == 0
		assert status["config"]["voting_threshold"] == 3
		assert worker.decomposed == []

	@pytest.mark.asyncio
	async def test_unknown_escalation_policy(self, tools):
		result = json.loads(await tools["maker_run"](idea=IDEA, escalation="coin-flip"))
		assert result["success"] is False
		assert "Unknown escalation policy" in result["error"]

	@pytest.mark.asyncio
	async def test_invalid_threshold(self, tools):
		result = json.loads(await tools["maker_run"](idea=IDEA, threshold=0))
		assert result["success"] is False


class TestInspectAndResume:
	"""Tests for maker_status, maker_get_tree and maker_resume."""

	@pytest.mark.asyncio
	async def test_status_without_run(self, tools):
		result = json.loads(await tools["maker_status"]())
		assert result == {"success": True, "exists": False}

	@pytest.mark.asyncio
	async def test_tree_without_run(self, tools):
		result = json.loads(await tools["maker_get_tree"]())
		assert result["success"] is False

	@pytest.mark.asyncio
	async def test_resume_without_run(self, tools):
		result = json.loads(await tools["maker_resume"]())
		assert result["success"] is False
		assert "No saved state found" in result["error"]

	@pytest.mark.asyncio
	async def test_after_run(self, tools):
		worker = ScriptedWorker(answers=ANSWERS, decompositions={IDEA: PLAN})
		with patch("maker_orchestrator.tools.maker.CLIWorker", return_value=worker):
			await tools["maker_run"](idea=IDEA)

		status = json.loads(await tools["maker_status"]())
		assert status["succeeded"] is True
		assert status["completion"] == 1.0
		assert status["counts"]["completed"] == 3

		tree = json.loads(await tools["maker_get_tree"]())
		assert tree["root"]["id"] == "root"
		assert [c["description"] for c in tree["root"]["children"]] == ["Write API", "Write UI"]
		assert tree["root"]["children"][0]["context"]["vote_counts"] == {"0": 3}

		with patch("maker_orchestrator.tools.maker.CLIWorker", return_value=ScriptedWorker()):
			resumed = json.loads(await tools["maker_resume"]())
		assert resumed["success"] is True
