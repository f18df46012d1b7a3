"""Task tree operations: rooting, attaching children, lookup and progress."""

import logging
import uuid
from typing import Callable, Iterator, Optional

from .models import NodeContext, TaskNode, TaskStatus, TreeInvariantViolation

logger = logging.getLogger(__name__)


class NodeNotFoundError(TreeInvariantViolation):
	"""Raised when a node id is not present in the tree."""
	pass


class InvalidStateError(TreeInvariantViolation):
	"""Raised when the tree is not in a state that allows the operation."""
	pass


def default_task_id() -> str:
	"""Random task id, e.g. 'task-3f9a1c2b7'."""
	return f"task-{uuid.uuid4().hex[:9]}"


class TaskTree:
	"""
	Owns the root of one run's decomposition tree.

	All operations are synchronous and act only on the tree held here.

	Usage:
		tree = TaskTree(max_depth=3)
		root = tree.create_root("Build a todo app", context=NodeContext(repo="me/todo"))
		child = tree.add_child(root.id, "Design the data model")
		tree.completion_ratio()
	"""

	UPDATABLE_FIELDS = frozenset({"status", "result", "context"})

	def __init__(
		self,
		root: Optional[TaskNode] = None,
		max_depth: Optional[int] = None,
		id_factory: Callable[[], str] = default_task_id,
	):
		self.root = root
		self.max_depth = max_depth
		self._new_id = id_factory

	def create_root(
		self,
		description: str,
		context: Optional[NodeContext] = None,
		node_id: Optional[str] = None,
	) -> TaskNode:
		"""
		Create the single root of the run.

		Raises:
			InvalidStateError: If a root already exists
		"""
		if self.root is not None:
			raise InvalidStateError("A root task already exists. Only one root is allowed per run.")

		self.root = TaskNode(
			id=node_id or self._new_id(),
			description=description,
			depth=0,
			context=context or NodeContext(),
		)
		return self.root

	def add_child(self, parent_id: str, description: str) -> TaskNode:
		"""
		Create a child under `parent_id` and append it to the parent's children.

		The child gets depth parent.depth + 1 and inherits the parent's
		repository context.

		Raises:
			InvalidStateError: If there is no root yet
			NodeNotFoundError: If the parent is absent
			TreeInvariantViolation: If the parent is minimal or the child would
				exceed the maximum depth
		"""
		if self.root is None:
			raise InvalidStateError("Cannot add a subtask to a non-existent root.")

		parent = self.find(parent_id)
		if parent is None:
			raise NodeNotFoundError(f"Parent task with ID {parent_id} not found.")

		if parent.is_minimal:
			raise TreeInvariantViolation(f"Task {parent_id} is minimal and cannot have subtasks.")

		depth = parent.depth + 1
		if self.max_depth is not None and depth > self.max_depth:
			raise TreeInvariantViolation(
				f"Subtask of {parent_id} would sit at depth {depth}, above the maximum of {self.max_depth}."
			)

		child = TaskNode(
			id=self._new_id(),
			description=description,
			depth=depth,
			context=parent.context.inherited(),
		)
		parent.children.append(child)
		return child

	def find(self, node_id: str) -> Optional[TaskNode]:
		"""Depth-first search for a node by id."""
		for node in self.walk():
			if node.id == node_id:
				return node
		return None

	def parent_of(self, node_id: str) -> Optional[TaskNode]:
		"""Return the parent of `node_id`, or None for the root or unknown ids."""
		for node in self.walk():
			for child in node.children:
				if child.id == node_id:
					return node
		return None

	def update(self, node_id: str, **fields) -> TaskNode:
		"""
		Update status, result or context of a node.

		Status changes go through TaskNode.transition so they stay monotonic.
		"""
		node = self.find(node_id)
		if node is None:
			raise NodeNotFoundError(f"Task with ID {node_id} not found.")

		unknown = set(fields) - self.UPDATABLE_FIELDS
		if unknown:
			raise TreeInvariantViolation(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

		if "status" in fields:
			node.transition(TaskStatus(fields.pop("status")))
		for key, value in fields.items():
			setattr(node, key, value)
		return node

	def walk(self) -> Iterator[TaskNode]:
		"""Iterate over all nodes in pre-order."""
		if self.root is None:
			return
		stack = [self.root]
		while stack:
			node = stack.pop()
			yield node
			stack.extend(reversed(node.children))

	def leaves(self) -> list[TaskNode]:
		"""All nodes without children, in pre-order."""
		return [node for node in self.walk() if not node.children]

	def counts_by_status(self) -> dict[str, int]:
		counts = {status.value: 0 for status in TaskStatus}
		for node in self.walk():
			counts[node.status.value] += 1
		return counts

	def completion_ratio(self) -> float:
		"""Completed nodes over all nodes, 0.0 for an empty tree."""
		nodes = list(self.walk())
		if not nodes:
			return 0.0
		completed = sum(1 for node in nodes if node.status == TaskStatus.COMPLETED)
		return completed / len(nodes)

	def validate(self) -> None:
		"""
		Check the structural rules of the whole tree.

		Raises:
			TreeInvariantViolation: On the first broken rule found
		"""
		if self.root is None:
			return
		if self.root.depth != 0:
			raise TreeInvariantViolation(f"Root {self.root.id} has depth {self.root.depth}, expected 0.")

		seen: set[str] = set()
		for node in self.walk():
			if node.id in seen:
				raise TreeInvariantViolation(f"Task {node.id} appears more than once in the tree.")
			seen.add(node.id)

			if node.children and node.is_minimal:
				raise TreeInvariantViolation(f"Task {node.id} is minimal but has subtasks.")
			if self.max_depth is not None and node.depth > self.max_depth:
				raise TreeInvariantViolation(
					f"Task {node.id} sits at depth {node.depth}, above the maximum of {self.max_depth}."
				)
			for child in node.children:
				if child.depth != node.depth + 1:
					raise TreeInvariantViolation(
						f"Task {child.id} has depth {child.depth}, expected {node.depth + 1}."
					)
