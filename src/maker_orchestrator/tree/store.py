"""
State Store - JSON snapshot persistence for a run.

Features:
- Whole-document snapshots (no deltas)
- Atomic replace via temp file + rename
- Missing file loads as a fresh, empty run
- Metadata-merging partial updates
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .models import PersistedState, RunConfig, TaskNode

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "maker-state.json"


class PersistenceWriteFailure(Exception):
	"""Raised when a snapshot cannot be durably written."""
	pass


class StateLoadError(Exception):
	"""Raised when a snapshot exists but cannot be read or has nothing to resume."""
	pass


class StateStore:
	"""
	File-backed snapshot store. Assumes a single writer.

	Usage:
		store = StateStore("data/maker-state.json")
		state = store.load()          # empty PersistedState if the file is absent
		store.save(state)             # atomic replace
		store.update(root=root)       # load, merge metadata, save
	"""

	def __init__(self, path: str | Path = DEFAULT_STATE_FILE):
		self.path = Path(path).expanduser()

	def exists(self) -> bool:
		return self.path.exists()

	def load(self) -> PersistedState:
		"""
		Load the snapshot.

		Returns:
			The persisted state, or an empty state if the file does not exist

		Raises:
			StateLoadError: If the file cannot be read or parsed
		"""
		try:
			data = self.path.read_text(encoding="utf-8")
		except FileNotFoundError:
			return PersistedState()
		except OSError as e:
			raise StateLoadError(f"Failed to load state from {self.path}: {e}") from e

		try:
			return PersistedState.model_validate_json(data)
		except ValidationError as e:
			raise StateLoadError(f"Failed to load state from {self.path}: {e}") from e

	def save(self, state: PersistedState) -> None:
		"""
		Write the whole snapshot atomically.

		The document goes to a temp file in the same directory, is flushed to
		disk, and then renamed over the target. A failure at any point leaves
		the previous snapshot untouched.

		Raises:
			PersistenceWriteFailure: If the snapshot could not be written
		"""
		state.touch()
		payload = state.model_dump_json(indent=2)

		tmp_path: Optional[str] = None
		try:
			self.path.parent.mkdir(parents=True, exist_ok=True)
			fd, tmp_path = tempfile.mkstemp(
				dir=str(self.path.parent),
				prefix=f".{self.path.name}.",
				suffix=".tmp",
			)
			with os.fdopen(fd, "w", encoding="utf-8") as f:
				f.write(payload)
				f.flush()
				os.fsync(f.fileno())
			os.replace(tmp_path, self.path)
			tmp_path = None
		except OSError as e:
			raise PersistenceWriteFailure(f"Failed to save state to {self.path}: {e}") from e
		finally:
			if tmp_path is not None:
				try:
					os.unlink(tmp_path)
				except OSError:
					logger.debug(f"Could not remove temp snapshot {tmp_path}")

		logger.debug(f"Saved state to {self.path}")

	def update(
		self,
		root: Optional[TaskNode] = None,
		config: Optional[RunConfig] = None,
		metadata: Optional[dict[str, Any]] = None,
	) -> PersistedState:
		"""
		Load the current snapshot, apply the given parts and save it.

		Metadata is merged key by key; root and config replace what is stored.
		"""
		state = self.load()
		if root is not None:
			state.root = root
		if config is not None:
			state.config = config
		if metadata:
			state.metadata.update(metadata)
		self.save(state)
		return state
