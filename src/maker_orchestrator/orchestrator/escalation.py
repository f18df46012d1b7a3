"""
Escalation - Human decision boundary for the engine.

A gate is handed the ranked candidates for a task and answers with the
position of the chosen one, or None to veto them all. The call blocks
the task that asked until an answer arrives.
"""

import asyncio
import logging
from typing import Optional, Protocol

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from ..tree.models import TaskNode

logger = logging.getLogger(__name__)

VETO_CHOICE = "v"
PREVIEW_LENGTH = 100


class EscalationGate(Protocol):
	"""Where the engine goes when it cannot decide by itself."""

	async def present(self, task: TaskNode, candidates: list[str]) -> Optional[int]:
		"""Return the index into `candidates` of the chosen one, or None to veto all."""
		...

	async def clarify(self, task: TaskNode) -> str:
		"""Ask for more detail on an ambiguous task."""
		...


def preview(text: str, limit: int = PREVIEW_LENGTH) -> str:
	"""Single-line preview of a candidate, truncated with '...'."""
	flat = " ".join(text.split())
	if len(flat) > limit:
		return flat[: limit - 3] + "..."
	return flat


class ConsoleEscalationGate:
	"""Asks a human at the terminal using rich prompts."""

	def __init__(self, console: Optional[Console] = None):
		self.console = console or Console()

	async def present(self, task: TaskNode, candidates: list[str]) -> Optional[int]:
		return await asyncio.to_thread(self._ask_choice, task, candidates)

	async def clarify(self, task: TaskNode) -> str:
		return await asyncio.to_thread(self._ask_text, task)

	def _ask_choice(self, task: TaskNode, candidates: list[str]) -> Optional[int]:
		table = Table(title="Candidate Review", show_lines=True)
		table.add_column("#", justify="right", style="bold")
		table.add_column("Candidate")
		for i, text in enumerate(candidates, start=1):
			table.add_row(str(i), preview(text))
		table.add_row(VETO_CHOICE, "[red]Veto all[/red] - reject every candidate")

		self.console.print(Panel(task.description, title=f"Task {task.id}", border_style="yellow"))
		self.console.print(table)

		choices = [str(i) for i in range(1, len(candidates) + 1)] + [VETO_CHOICE]
		answer = Prompt.ask("Select a candidate", choices=choices, console=self.console)
		return parse_choice(answer, len(candidates))

	def _ask_text(self, task: TaskNode) -> str:
		self.console.print(Panel(
			f'The task "{task.description}" needs more detail.',
			title=f"Clarify Task {task.id}",
			border_style="yellow",
		))
		return Prompt.ask("Additional details", console=self.console)


def parse_choice(answer: str, count: int) -> Optional[int]:
	"""Turn a 1-based answer into a 0-based index; anything else is a veto."""
	answer = (answer or "").strip().lower()
	if not answer.isdigit():
		return None
	index = int(answer) - 1
	if 0 <= index < count:
		return index
	return None


class AutoEscalationGate:
	"""
	Non-interactive gate.

	Policies:
	- "veto": reject every candidate
	- "leader": accept the top-ranked candidate
	"""

	POLICIES = ("veto", "leader")

	def __init__(self, policy: str = "veto"):
		if policy not in self.POLICIES:
			raise ValueError(f"Unknown escalation policy: {policy}")
		self.policy = policy

	async def present(self, task: TaskNode, candidates: list[str]) -> Optional[int]:
		if self.policy == "leader" and candidates:
			logger.info(f"Auto-escalation for task {task.id}: accepting top-ranked candidate")
			return 0
		logger.info(f"Auto-escalation for task {task.id}: vetoing {len(candidates)} candidate(s)")
		return None

	async def clarify(self, task: TaskNode) -> str:
		return ""
