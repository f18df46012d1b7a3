"""
Decomposer - Splits composite tasks into subtasks via a worker.

The worker is asked for a strict JSON object:
	{"subtasks": [...], "rationale": "...", "isMinimal": false}

Any failure to get or parse that answer falls back to a fixed
three-step plan, so decomposition never stops a run.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from ..tree.manager import TaskTree
from ..tree.models import RunConfig, TaskNode
from ..worker import SessionStatus, Worker, WorkerError, run_session
from .escalation import EscalationGate

logger = logging.getLogger(__name__)

MINIMAL_WORD_COUNT = 3
JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class DecompositionParseFailure(Exception):
	"""Raised when a worker's decomposition answer has no usable JSON object."""
	pass


@dataclass
class DecompositionResult:
	"""Outcome of decomposing one task."""
	subtasks: list[str] = field(default_factory=list)
	rationale: str = ""
	is_minimal: bool = False
	fallback: bool = False


PROMPT_TEMPLATE = """
You are a task decomposition agent in a recursive decomposition process.
Your goal is to break down a complex task into 2-5 smaller, manageable subtasks.

Task to decompose: "{description}"
Current recursion depth: {depth}
Max recursion depth: {max_depth}
{clarification}
Instructions:
1. Analyze the task and determine if it can be broken down into smaller, logical steps.
2. If the task is simple enough to be executed directly (minimal), indicate this.
3. Return your response ONLY as a valid JSON object with the following structure:
{{
  "subtasks": ["subtask 1", "subtask 2", ...],
  "rationale": "Explanation of the decomposition strategy",
  "isMinimal": false
}}

If the task is NOT minimal, set "isMinimal" to false and provide subtasks.
If "isMinimal" is true, "subtasks" must be an empty array [].
If the task is too ambiguous to split, add "ambiguous": true.
Do not include any other text, markdown formatting, or explanations outside the JSON object.
"""


class DecompositionEngine:
	"""
	Decides whether a task needs splitting and produces its subtasks.

	The escalation gate is only consulted when `clarify_ambiguous` is set
	and the worker marks a task as ambiguous.
	"""

	def __init__(
		self,
		worker: Worker,
		gate: Optional[EscalationGate] = None,
		clarify_ambiguous: bool = False,
	):
		self.worker = worker
		self.gate = gate
		self.clarify_ambiguous = clarify_ambiguous

	def is_minimal(self, task: TaskNode) -> bool:
		"""
		Minimality test, first match wins:
		explicit flag, then existing children (not minimal), then a
		description of at most three words.
		"""
		if task.is_minimal:
			return True
		if task.children:
			return False
		return len(task.description.split()) <= MINIMAL_WORD_COUNT

	async def decompose(self, task: TaskNode, config: RunConfig) -> DecompositionResult:
		"""
		Ask the worker how to split `task`.

		Marks the task minimal when the depth ceiling is reached or the
		worker says it is minimal. Never raises for worker or parse errors.
		"""
		logger.info(f"Decomposing task {task.id}: {task.description[:80]}")

		if task.depth >= config.max_recursion_depth:
			logger.info(f"Max recursion depth reached for task {task.id}")
			result = DecompositionResult(rationale="Maximum recursion depth reached.", is_minimal=True)
			self._record(task, result)
			return result

		try:
			parsed = await self._ask(task, config)
			if parsed.get("ambiguous") is True and self.clarify_ambiguous and self.gate:
				clarification = await self.gate.clarify(task)
				if clarification.strip():
					parsed = await self._ask(task, config, clarification.strip())
		except (WorkerError, DecompositionParseFailure) as e:
			logger.warning(f"Decomposition of task {task.id} failed, using fallback: {e}")
			result = self.fallback(task, str(e))
			self._record(task, result)
			return result

		rationale = parsed.get("rationale")
		if not isinstance(rationale, str) or not rationale:
			rationale = ""

		if parsed.get("isMinimal") is True:
			result = DecompositionResult(
				rationale=rationale or "Task determined to be minimal.",
				is_minimal=True,
			)
		else:
			subtasks = parsed.get("subtasks")
			if not isinstance(subtasks, list):
				subtasks = []
			result = DecompositionResult(
				subtasks=[s.strip() for s in subtasks if isinstance(s, str) and s.strip()],
				rationale=rationale or "Decomposition successful.",
			)

		self._record(task, result)
		return result

	def build_prompt(self, task: TaskNode, config: RunConfig, clarification: Optional[str] = None) -> str:
		extra = f"Additional details from the user: {clarification}\n" if clarification else ""
		return PROMPT_TEMPLATE.format(
			description=task.description,
			depth=task.depth,
			max_depth=config.max_recursion_depth,
			clarification=extra,
		)

	async def _ask(self, task: TaskNode, config: RunConfig, clarification: Optional[str] = None) -> dict:
		prompt = self.build_prompt(task, config, clarification)
		poll = await run_session(
			self.worker,
			prompt,
			task.context,
			poll_interval=config.poll_interval,
			max_polls=config.max_polls,
		)
		if poll.status == SessionStatus.FAILED:
			raise WorkerError(poll.error or "Worker session failed without error message")
		return parse_response(poll.output or "")

	@staticmethod
	def fallback(task: TaskNode, reason: str) -> DecompositionResult:
		"""Fixed research/implement/verify plan used when the worker can't help."""
		return DecompositionResult(
			subtasks=[
				f'Step 1: Research and plan for "{task.description}"',
				f'Step 2: Implement the core components of "{task.description}"',
				f'Step 3: Test and verify "{task.description}"',
			],
			rationale=f"Fallback decomposition due to error: {reason}",
			fallback=True,
		)

	@staticmethod
	def attach(tree: TaskTree, task: TaskNode, result: DecompositionResult) -> list[TaskNode]:
		"""Create the subtasks of `result` under `task`, in order."""
		return [tree.add_child(task.id, description) for description in result.subtasks]

	@staticmethod
	def _record(task: TaskNode, result: DecompositionResult) -> None:
		if result.is_minimal:
			task.is_minimal = True
		task.context.rationale = result.rationale


def parse_response(output: str) -> dict:
	"""
	Pull the JSON object out of a worker answer.

	Takes everything from the first '{' to the last '}'.

	Raises:
		DecompositionParseFailure: If there is no object or it is not valid JSON
	"""
	match = JSON_OBJECT.search(output)
	if not match:
		raise DecompositionParseFailure("Failed to parse decomposition response: no JSON found in output")
	try:
		parsed = json.loads(match.group(0))
	except json.JSONDecodeError as e:
		raise DecompositionParseFailure(f"Failed to parse decomposition response: {e}") from e
	if not isinstance(parsed, dict):
		raise DecompositionParseFailure("Failed to parse decomposition response: not a JSON object")
	return parsed
