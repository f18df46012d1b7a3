"""Run tools - start, resume and inspect decomposition runs."""

import json
import logging

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..orchestrator.engine import MakerOrchestrator, summarize
from ..orchestrator.escalation import AutoEscalationGate
from ..tree.models import TaskNode, TaskStatus
from ..tree.store import PersistenceWriteFailure, StateLoadError, StateStore
from ..worker import CLIWorker

logger = logging.getLogger(__name__)


def build_orchestrator(config: Config, escalation: str = "veto", model: str = "") -> MakerOrchestrator:
	"""Orchestrator wired to the configured CLI worker and a non-interactive gate."""
	worker = CLIWorker(
		command=config.worker_command,
		model=model or config.model_name,
		cwd=config.worker_cwd or None,
	)
	return MakerOrchestrator(
		worker=worker,
		gate=AutoEscalationGate(escalation),
		store=StateStore(config.state_file),
	)


def _run_report(root: TaskNode) -> dict:
	return {
		"success": root.status == TaskStatus.COMPLETED,
		"root_status": root.status.value,
		"result": root.result,
		"failure_reason": root.context.failure_reason,
	}


def register_maker_tools(mcp: FastMCP, config: Config) -> None:
	"""Register run tools."""

	@mcp.tool()
	async def maker_run(
		idea: str,
		repo: str = "",
		escalation: str = "veto",
		max_depth: int | None = None,
		threshold: int | None = None,
		model: str = "",
	) -> str:
		"""
		Start a new decomposition run for an idea.

		Replaces any run stored in the state file. Runs without a human in
		the loop, so unresolved votes follow the escalation policy.

		Args:
			idea: High-level goal to decompose and solve
			repo: Optional repository handle passed to workers (e.g., "me/todo-app")
			escalation: "veto" rejects unresolved votes, "leader" accepts the top candidate
			max_depth: Maximum recursion depth (default from config)
			threshold: Voting margin k (default from config)
			model: Model name passed to the worker (default from config)
		"""
		try:
			orchestrator = build_orchestrator(config, escalation, model)
			run_config = config.run_config(
				max_recursion_depth=max_depth,
				voting_threshold=threshold,
				model_name=model or None,
			)
			root = await orchestrator.run(idea, run_config, repo=repo or None)
		except (ValueError, PersistenceWriteFailure) as e:
			logger.error(f"maker_run failed: {e}")
			return json.dumps({"success": False, "error": str(e)})

		return json.dumps(_run_report(root), indent=2)

	@mcp.tool()
	async def maker_resume(escalation: str = "veto") -> str:
		"""
		Resume the run stored in the state file.

		Args:
			escalation: "veto" rejects unresolved votes, "leader" accepts the top candidate
		"""
		try:
			orchestrator = build_orchestrator(config, escalation)
			root = await orchestrator.resume()
		except (ValueError, StateLoadError, PersistenceWriteFailure) as e:
			logger.error(f"maker_resume failed: {e}")
			return json.dumps({"success": False, "error": str(e)})

		return json.dumps(_run_report(root), indent=2)

	@mcp.tool()
	async def maker_status() -> str:
		"""Get progress of the stored run: completion ratio, node counts and outcome."""
		try:
			summary = summarize(StateStore(config.state_file).load())
		except StateLoadError as e:
			return json.dumps({"success": False, "error": str(e)})
		return json.dumps({"success": True, **summary}, indent=2)

	@mcp.tool()
	async def maker_get_tree() -> str:
		"""Get the full task tree of the stored run, including results and vote counts."""
		try:
			state = StateStore(config.state_file).load()
		except StateLoadError as e:
			return json.dumps({"success": False, "error": str(e)})
		if state.root is None:
			return json.dumps({"success": False, "error": "No run found"})
		return json.dumps({"success": True, "root": state.root.model_dump(mode="json")}, indent=2)
