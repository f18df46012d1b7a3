"""
Engine - Drives a decomposition run over the task tree.

Each node moves pending -> in_progress -> completed/failed. Composite
nodes are split and their children processed one after another before
the parent aggregates; minimal nodes are solved by consensus voting.
The snapshot is written after every transition so a crashed run can be
resumed from the first node that had not finished.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from ..tree.manager import TaskTree, default_task_id
from ..tree.models import NodeContext, PersistedState, RunConfig, TaskNode, TaskStatus
from ..tree.store import StateLoadError, StateStore
from ..worker import Worker
from .decomposer import DecompositionEngine
from .escalation import EscalationGate
from .voting import ConsensusVotingEngine

logger = logging.getLogger(__name__)

ROOT_ID = "root"
RESULT_SEPARATOR = "\n\n"


class MakerOrchestrator:
	"""
	Runs and resumes decomposition runs.

	Owns the tree of the run in progress; only this class writes the
	snapshot.
	"""

	def __init__(
		self,
		worker: Worker,
		gate: EscalationGate,
		store: Optional[StateStore] = None,
		decomposer: Optional[DecompositionEngine] = None,
		voter: Optional[ConsensusVotingEngine] = None,
		id_factory: Callable[[], str] = default_task_id,
	):
		self.store = store or StateStore()
		self.decomposer = decomposer or DecompositionEngine(worker, gate)
		self.voter = voter or ConsensusVotingEngine(worker, gate)
		self._new_id = id_factory

		self.tree: Optional[TaskTree] = None
		self.state: Optional[PersistedState] = None

	@property
	def config(self) -> RunConfig:
		return self.state.config

	async def run(self, idea: str, config: RunConfig, repo: Optional[str] = None) -> TaskNode:
		"""
		Start a new run for `idea`.

		Returns:
			The root task; the run succeeded if its status is completed

		Raises:
			PersistenceWriteFailure: If a checkpoint could not be written
		"""
		logger.info(f'Starting run for: "{idea}"')

		self.tree = TaskTree(max_depth=config.max_recursion_depth, id_factory=self._new_id)
		root = self.tree.create_root(idea, context=NodeContext(repo=repo), node_id=ROOT_ID)
		self.state = PersistedState(
			root=root,
			config=config,
			metadata={"idea": idea, "started_at": datetime.now().isoformat()},
		)
		self._persist()

		await self._process(root)

		self._finish()
		return root

	async def resume(self) -> TaskNode:
		"""
		Continue the run stored in the snapshot.

		Finished nodes are skipped. A snapshot whose root is already
		terminal is returned as-is without being rewritten.

		Raises:
			StateLoadError: If there is no run to resume
		"""
		state = self.store.load()
		if state.root is None or state.config is None:
			raise StateLoadError("No saved state found to resume.")

		self.state = state
		self.tree = TaskTree(
			root=state.root,
			max_depth=state.config.max_recursion_depth,
			id_factory=self._new_id,
		)
		self.tree.validate()

		if state.root.is_terminal:
			logger.info(f"Run already finished with status {state.root.status.value}; nothing to resume")
			return state.root

		logger.info(f'Resuming run for: "{state.root.description}"')
		await self._resume(state.root)

		self._finish()
		return state.root

	def status(self) -> dict[str, Any]:
		"""Summary of the stored snapshot."""
		return summarize(self.store.load())

	async def _resume(self, task: TaskNode) -> None:
		if task.is_terminal:
			return

		if task.children:
			for child in task.children:
				await self._resume(child)
			self._aggregate(task)
			self._persist()
		else:
			await self._process(task)

	async def _process(self, task: TaskNode) -> None:
		if task.is_terminal:
			return

		task.transition(TaskStatus.IN_PROGRESS)
		self._persist()

		if self.decomposer.is_minimal(task):
			logger.info(f"Task {task.id} is minimal. Running voting...")
			task.is_minimal = True
			await self._solve(task)
		else:
			result = await self.decomposer.decompose(task, self.config)

			if result.subtasks:
				self.decomposer.attach(self.tree, task, result)
				self._persist()

				for child in task.children:
					await self._process(child)

				self._aggregate(task)
				self._persist()
			else:
				if not task.is_minimal:
					logger.warning(f"Task {task.id} could not be decomposed further. Treating as minimal.")
					task.is_minimal = True
				await self._solve(task)

	async def _solve(self, task: TaskNode) -> None:
		outcome = await self.voter.vote(task, self.config)
		if outcome.has_winner:
			task.transition(TaskStatus.COMPLETED)
			logger.info(f"Task {task.id} completed (confidence {outcome.confidence:.2f})")
		else:
			task.context.failure_reason = outcome.rationale
			task.transition(TaskStatus.FAILED)
			logger.warning(f"Task {task.id} failed: {outcome.rationale}")
		self._persist()

	def _aggregate(self, task: TaskNode) -> None:
		"""Fold children's statuses and results into their parent."""
		if not task.children:
			return

		if all(child.status == TaskStatus.COMPLETED for child in task.children):
			task.result = RESULT_SEPARATOR.join(child.result or "" for child in task.children)
			task.transition(TaskStatus.COMPLETED)
		elif any(child.status == TaskStatus.FAILED for child in task.children):
			failed = [child.id for child in task.children if child.status == TaskStatus.FAILED]
			task.context.failure_reason = f"Subtask(s) failed: {', '.join(failed)}"
			task.transition(TaskStatus.FAILED)
		else:
			logger.warning(f"Task {task.id} still has unfinished subtasks; leaving it in progress")

	def _persist(self) -> None:
		self.store.save(self.state)

	def _finish(self) -> None:
		root = self.state.root
		self.state.metadata.update({
			"finished_at": datetime.now().isoformat(),
			"outcome": root.status.value,
			"completion": self.tree.completion_ratio(),
		})
		self._persist()
		logger.info(f'Run for "{root.description}" finished with status {root.status.value}')


def summarize(state: PersistedState) -> dict[str, Any]:
	"""Progress figures for a snapshot."""
	if state.root is None:
		return {"exists": False}

	tree = TaskTree(root=state.root)
	counts = tree.counts_by_status()
	return {
		"exists": True,
		"idea": state.root.description,
		"root_status": state.root.status.value,
		"succeeded": state.root.status == TaskStatus.COMPLETED,
		"completion": tree.completion_ratio(),
		"total_nodes": sum(counts.values()),
		"leaves": len(tree.leaves()),
		"counts": counts,
		"config": state.config.model_dump(mode="json") if state.config else None,
		"metadata": state.metadata,
	}
