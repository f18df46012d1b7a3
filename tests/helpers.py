"""Shared test doubles and helpers for maker-orchestrator tests."""

import itertools
import re
from collections import deque
from typing import Callable, Iterable, Optional

from maker_orchestrator.tree.models import NodeContext, RunConfig, TaskNode
from maker_orchestrator.worker import SessionPoll, SessionStatus

# Scripted answer that never finishes
PENDING = object()

DECOMPOSITION_TASK = re.compile(r'Task to decompose: "(.*)"')
MINIMAL_JSON = '{"subtasks": [], "rationale": "Small enough", "isMinimal": true}'


def sequential_ids(prefix: str = "task") -> Callable[[], str]:
	"""Deterministic id source: task-1, task-2, ..."""
	counter = itertools.count(1)
	return lambda: f"{prefix}-{next(counter)}"


def fast_config(**overrides) -> RunConfig:
	"""RunConfig that never sleeps between polls."""
	values = {
		"max_recursion_depth": 2,
		"voting_threshold": 2,
		"batch_size": 3,
		"max_rounds": 3,
		"poll_interval": 0,
		"max_polls": 3,
	}
	values.update(overrides)
	return RunConfig(**values)


def make_node(description: str = "Write the parser", **fields) -> TaskNode:
	return TaskNode(id=fields.pop("id", "node-1"), description=description, **fields)


class ScriptedWorker:
	"""
	Worker that answers from scripts instead of running anything.

	Decomposition prompts are answered from `decompositions`, keyed by the
	task description inside the prompt (minimal by default). Every other
	session takes the next entry of `answers[description]`, falling back to
	`default_answer`. An entry is the output text, None for a failed session,
	PENDING for a session that never finishes, or an exception to raise
	from start().
	"""

	def __init__(
		self,
		answers: Optional[dict[str, Iterable]] = None,
		decompositions: Optional[dict[str, object]] = None,
		default_answer: object = None,
		default_decomposition: object = MINIMAL_JSON,
	):
		self.answers = {key: deque(value) for key, value in (answers or {}).items()}
		self.decompositions = decompositions or {}
		self.default_answer = default_answer
		self.default_decomposition = default_decomposition
		self.started: list[str] = []
		self.decomposed: list[str] = []
		self.contexts: list[NodeContext] = []
		self.released: list[str] = []
		self._results: dict[str, object] = {}
		self._ids = itertools.count(1)

	async def start(self, description: str, context: NodeContext) -> str:
		match = DECOMPOSITION_TASK.search(description)
		if match:
			task = match.group(1)
			self.decomposed.append(task)
			answer = self.decompositions.get(task, self.default_decomposition)
		else:
			self.started.append(description)
			queue = self.answers.get(description)
			answer = queue.popleft() if queue else self.default_answer

		if isinstance(answer, BaseException):
			raise answer

		self.contexts.append(context)
		session_id = f"session-{next(self._ids)}"
		self._results[session_id] = answer
		return session_id

	async def poll(self, session_id: str) -> SessionPoll:
		answer = self._results[session_id]
		if answer is PENDING:
			return SessionPoll(session_id=session_id, status=SessionStatus.STARTED)
		if answer is None:
			return SessionPoll(session_id=session_id, status=SessionStatus.FAILED, error="scripted failure")
		return SessionPoll(session_id=session_id, status=SessionStatus.COMPLETED, output=answer)

	def release(self, session_id: str) -> None:
		self.released.append(session_id)


class ScriptedGate:
	"""Escalation gate answering from a script and recording what it was shown."""

	def __init__(self, choices: Iterable[Optional[int]] = (), clarifications: Iterable[str] = ()):
		self.choices = deque(choices)
		self.clarifications = deque(clarifications)
		self.presented: list[tuple[str, list[str]]] = []
		self.clarified: list[str] = []

	async def present(self, task: TaskNode, candidates: list[str]) -> Optional[int]:
		self.presented.append((task.id, list(candidates)))
		return self.choices.popleft() if self.choices else None

	async def clarify(self, task: TaskNode) -> str:
		self.clarified.append(task.id)
		return self.clarifications.popleft() if self.clarifications else ""


def capture_tools(config, register_fn: Callable) -> dict:
	"""Register tools on a mock MCP and return the captured tool functions."""
	captured = {}

	class MockMCP:
		def tool(self):
			def decorator(fn):
				captured[fn.__name__] = fn
				return fn
			return decorator

	register_fn(MockMCP(), config)
	return captured
