"""Tree module - Task tree data model, operations and snapshot storage."""

from .manager import InvalidStateError, NodeNotFoundError, TaskTree
from .models import (
	Candidate,
	NodeContext,
	PersistedState,
	RedFlagSeverity,
	RunConfig,
	TaskNode,
	TaskStatus,
	TreeInvariantViolation,
)
from .store import PersistenceWriteFailure, StateLoadError, StateStore

__all__ = [
	"Candidate",
	"InvalidStateError",
	"NodeContext",
	"NodeNotFoundError",
	"PersistedState",
	"PersistenceWriteFailure",
	"RedFlagSeverity",
	"RunConfig",
	"StateLoadError",
	"StateStore",
	"TaskNode",
	"TaskStatus",
	"TaskTree",
	"TreeInvariantViolation",
]
