"""
Tree Models - Pydantic schemas for the decomposition tree and run snapshot.

Defines the task nodes that make up a run, the per-node context bag,
the run configuration and the whole-document snapshot written by the
state store.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class TreeInvariantViolation(Exception):
	"""Raised when an operation would break a structural rule of the tree."""
	pass


class TaskStatus(str, Enum):
	"""Status of a task node."""
	PENDING = "pending"
	IN_PROGRESS = "in_progress"
	COMPLETED = "completed"
	FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})

_ALLOWED_TRANSITIONS = {
	TaskStatus.PENDING: {TaskStatus.IN_PROGRESS},
	TaskStatus.IN_PROGRESS: {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.FAILED},
	TaskStatus.COMPLETED: set(),
	TaskStatus.FAILED: set(),
}


class RedFlagSeverity(str, Enum):
	"""How serious a red flag on a candidate is."""
	LOW = "low"
	MEDIUM = "medium"
	HIGH = "high"
	CRITICAL = "critical"

	@property
	def rank(self) -> int:
		return _SEVERITY_RANK[self]

	def at_least(self, other: "RedFlagSeverity") -> bool:
		"""True if this severity is the same as or more severe than `other`."""
		return self.rank >= other.rank


_SEVERITY_RANK = {
	RedFlagSeverity.LOW: 0,
	RedFlagSeverity.MEDIUM: 1,
	RedFlagSeverity.HIGH: 2,
	RedFlagSeverity.CRITICAL: 3,
}


class Candidate(BaseModel):
	"""A distinct candidate solution kept for audit after voting."""
	id: str = Field(description="Candidate identifier (e.g., 'candidate-0')")
	text: str = Field(description="Canonicalized candidate text")


class NodeContext(BaseModel):
	"""
	Typed context carried by a task node.

	Only `repo` is inherited by children; everything else is written by
	the engine for the node it belongs to.
	"""
	repo: Optional[str] = Field(default=None, description="Repository handle passed to workers")
	rationale: Optional[str] = Field(default=None, description="Why the node was split or marked minimal")
	failure_reason: Optional[str] = Field(default=None)
	candidates: list[Candidate] = Field(default_factory=list)
	vote_counts: dict[int, int] = Field(default_factory=dict)
	confidence: Optional[float] = Field(default=None)

	def inherited(self) -> "NodeContext":
		"""Context handed to a freshly created child."""
		return NodeContext(repo=self.repo)


class TaskNode(BaseModel):
	"""A node of the decomposition tree."""
	model_config = ConfigDict(validate_assignment=True)

	id: str = Field(frozen=True, description="Stable unique identifier")
	description: str = Field(frozen=True, description="Goal text for this node")
	status: TaskStatus = Field(default=TaskStatus.PENDING)
	children: list["TaskNode"] = Field(default_factory=list)
	result: Optional[str] = Field(default=None)
	depth: int = Field(default=0, ge=0, frozen=True)
	is_minimal: bool = Field(default=False)
	context: NodeContext = Field(default_factory=NodeContext)

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL_STATUSES

	def transition(self, status: TaskStatus) -> None:
		"""
		Move the node to `status`.

		Statuses only move forward: pending -> in_progress -> completed/failed.
		Re-entering in_progress is allowed so an interrupted node can be
		picked up again on resume.

		Raises:
			TreeInvariantViolation: If the move would go backwards or leave a
				terminal status
		"""
		if status not in _ALLOWED_TRANSITIONS[self.status]:
			raise TreeInvariantViolation(
				f"Task {self.id}: illegal status transition {self.status.value} -> {status.value}"
			)
		self.status = status


TaskNode.model_rebuild()


class RunConfig(BaseModel):
	"""Configuration for one decomposition run, persisted with the snapshot."""
	max_recursion_depth: int = Field(default=3, ge=0, description="Hard ceiling on tree depth")
	voting_threshold: int = Field(default=2, ge=1, description="Margin k for first-to-ahead-by-k")
	red_flag_severity_threshold: RedFlagSeverity = Field(
		default=RedFlagSeverity.HIGH,
		description="Minimum severity surfaced in logs; filtering itself is binary",
	)
	model_name: str = Field(default="opus", description="Passed through to the worker")

	# Sampling
	batch_size: int = Field(default=3, ge=1, description="Worker sessions per voting round")
	max_rounds: int = Field(default=10, ge=1, description="Voting rounds before escalation")
	poll_interval: float = Field(default=2.0, ge=0, description="Seconds between session polls")
	max_polls: int = Field(default=30, ge=1, description="Poll sweeps per round before timing out")


class PersistedState(BaseModel):
	"""Whole-document snapshot of a run."""
	root: Optional[TaskNode] = Field(default=None)
	config: Optional[RunConfig] = Field(default=None)
	metadata: dict[str, Any] = Field(default_factory=dict)

	def touch(self) -> None:
		"""Stamp the snapshot with the current time."""
		self.metadata["updated_at"] = datetime.now().isoformat()
