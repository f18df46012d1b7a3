"""Tests for the JSON snapshot store."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from maker_orchestrator.tree import (
	Candidate,
	NodeContext,
	PersistedState,
	PersistenceWriteFailure,
	RedFlagSeverity,
	RunConfig,
	StateLoadError,
	StateStore,
	TaskNode,
	TaskStatus,
)


def _state() -> PersistedState:
	leaf = TaskNode(
		id="task-1",
		description="Write the models",
		depth=1,
		status=TaskStatus.COMPLETED,
		is_minimal=True,
		result="class Todo",
		context=NodeContext(
			repo="me/todo",
			candidates=[Candidate(id="candidate-0", text="class Todo")],
			vote_counts={0: 3},
			confidence=1.0,
		),
	)
	root = TaskNode(
		id="root",
		description="Build a todo app",
		status=TaskStatus.IN_PROGRESS,
		children=[leaf],
		context=NodeContext(repo="me/todo"),
	)
	return PersistedState(
		root=root,
		config=RunConfig(voting_threshold=3, red_flag_severity_threshold=RedFlagSeverity.MEDIUM),
		metadata={"idea": "Build a todo app"},
	)


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
	return StateStore(tmp_path / "state" / "maker-state.json")


class TestLoad:
	"""Tests for StateStore.load."""

	def test_missing_file_loads_empty_state(self, store):
		state = store.load()
		assert state.root is None
		assert state.config is None
		assert state.metadata == {}
		assert not store.exists()

	def test_corrupt_file_raises(self, store):
		store.path.parent.mkdir(parents=True)
		store.path.write_text("{not json")
		with pytest.raises(StateLoadError):
			store.load()

	def test_wrong_shape_raises(self, store):
		store.path.parent.mkdir(parents=True)
		store.path.write_text(json.dumps({"root": {"id": "x"}}))
		with pytest.raises(StateLoadError):
			store.load()


class TestSave:
	"""Tests for StateStore.save."""

	def test_round_trip_keeps_tree_and_context(self, store):
		"""Vote counts come back with integer keys."""
		store.save(_state())
		loaded = store.load()

		assert loaded.root.status == TaskStatus.IN_PROGRESS
		leaf = loaded.root.children[0]
		assert leaf.result == "class Todo"
		assert leaf.context.vote_counts == {0: 3}
		assert leaf.context.candidates[0].text == "class Todo"
		assert loaded.config.voting_threshold == 3
		assert loaded.config.red_flag_severity_threshold == RedFlagSeverity.MEDIUM

	def test_save_stamps_updated_at(self, store):
		state = _state()
		store.save(state)
		assert "updated_at" in state.metadata
		assert "updated_at" in store.load().metadata

	def test_document_shape(self, store):
		store.save(_state())
		data = json.loads(store.path.read_text())
		assert set(data) == {"root", "config", "metadata"}
		assert data["root"]["children"][0]["status"] == "completed"

	def test_no_temp_files_left(self, store):
		store.save(_state())
		store.save(_state())
		assert [p.name for p in store.path.parent.iterdir()] == ["maker-state.json"]

	def test_failed_replace_keeps_previous_snapshot(self, store):
		"""A write that fails before the rename leaves the old file intact."""
		store.save(_state())
		before = store.path.read_text()

		changed = _state()
		changed.metadata["idea"] = "Something else"
		with patch("maker_orchestrator.tree.store.os.replace", side_effect=OSError("disk full")):
			with pytest.raises(PersistenceWriteFailure):
				store.save(changed)

		assert store.path.read_text() == before
		assert [p.name for p in store.path.parent.iterdir()] == ["maker-state.json"]

	def test_unwritable_directory_raises(self, tmp_path):
		blocker = tmp_path / "blocker"
		blocker.write_text("a file, not a directory")
		store = StateStore(blocker / "maker-state.json")
		with pytest.raises(PersistenceWriteFailure):
			store.save(_state())


class TestUpdate:
	"""Tests for StateStore.update."""

	def test_metadata_is_merged(self, store):
		store.save(_state())
		state = store.update(metadata={"outcome": "completed"})

		assert state.metadata["idea"] == "Build a todo app"
		assert state.metadata["outcome"] == "completed"
		assert store.load().metadata["outcome"] == "completed"

	def test_root_and_config_replace(self, store):
		store.save(_state())
		new_root = TaskNode(id="root", description="Other idea")
		store.update(root=new_root, config=RunConfig(max_recursion_depth=1))

		loaded = store.load()
		assert loaded.root.description == "Other idea"
		assert loaded.root.children == []
		assert loaded.config.max_recursion_depth == 1

	def test_update_on_empty_store_creates_file(self, store):
		store.update(metadata={"note": "first"})
		assert store.exists()
		assert store.load().metadata["note"] == "first"
