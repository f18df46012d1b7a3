"""
Worker - Start-and-poll sessions against an external agent CLI.

The engine only needs two calls from a worker:
- start(description, context) -> session id
- poll(session id) -> SessionPoll

CLIWorker implements them by spawning one subprocess per session and
reporting its state until it exits. Nothing is ever sent to cancel a
session; timeouts are bookkeeping on the caller's side, and an abandoned
session is released so the worker forgets it once the process exits.
"""

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from .tree.models import NodeContext

logger = logging.getLogger(__name__)


class WorkerError(Exception):
	"""Base exception for worker errors."""
	pass


class WorkerLaunchFailure(WorkerError):
	"""Raised when a session could not be started."""
	pass


class WorkerTimeout(WorkerError):
	"""Raised when a session did not finish within its poll budget."""
	pass


class SessionStatus(str, Enum):
	"""State of a worker session."""
	STARTED = "started"
	COMPLETED = "completed"
	FAILED = "failed"


@dataclass
class SessionPoll:
	"""Result of polling a worker session."""
	session_id: str
	status: SessionStatus
	output: Optional[str] = None
	error: Optional[str] = None

	@property
	def is_done(self) -> bool:
		return self.status != SessionStatus.STARTED


class Worker(Protocol):
	"""The capability the engine needs from an agent backend."""

	async def start(self, description: str, context: NodeContext) -> str:
		...

	async def poll(self, session_id: str) -> SessionPoll:
		...


def default_session_id() -> str:
	return f"session-{uuid.uuid4().hex[:12]}"


DEFAULT_COMMAND = ["claude", "--print", "--model", "{model}", "{prompt}"]


class CLIWorker:
	"""
	Worker backed by a command-line agent.

	Each session runs `command` with `{prompt}`, `{model}` and `{repo}`
	placeholders filled in. A session is completed when the process exits
	with status 0 (stdout is the output) and failed otherwise.
	"""

	def __init__(
		self,
		command: Optional[list[str]] = None,
		model: str = "opus",
		cwd: Optional[str] = None,
		env: Optional[dict[str, str]] = None,
		id_factory: Callable[[], str] = default_session_id,
	):
		self.command = list(command or DEFAULT_COMMAND)
		self.model = model
		self.cwd = os.path.expanduser(cwd) if cwd else None
		self.env = env
		self._new_id = id_factory
		self._sessions: dict[str, asyncio.Task] = {}

	def build_argv(self, description: str, context: NodeContext) -> list[str]:
		"""Fill the command template for one session."""
		values = {
			"prompt": description,
			"model": self.model,
			"repo": context.repo or "",
		}
		return [part.format(**values) for part in self.command]

	async def start(self, description: str, context: NodeContext) -> str:
		"""
		Spawn a session process and return its id without waiting for it.

		Raises:
			WorkerLaunchFailure: If the command template is invalid or the process
				could not be spawned
		"""
		try:
			argv = self.build_argv(description, context)
		except (KeyError, IndexError, ValueError) as e:
			raise WorkerLaunchFailure(f"Invalid worker command template {self.command}: {e!r}") from e

		env = None
		if self.env:
			env = os.environ.copy()
			env.update(self.env)

		try:
			process = await asyncio.create_subprocess_exec(
				*argv,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=self.cwd,
				env=env,
			)
		except FileNotFoundError as e:
			raise WorkerLaunchFailure(f"Worker command not found: {argv[0]}") from e
		except OSError as e:
			raise WorkerLaunchFailure(f"Failed to start worker: {e}") from e

		session_id = self._new_id()
		self._sessions[session_id] = asyncio.create_task(self._collect(session_id, process))
		logger.info(f"Started worker session {session_id} (pid {process.pid})")
		return session_id

	async def _collect(self, session_id: str, process: asyncio.subprocess.Process) -> SessionPoll:
		stdout, stderr = await process.communicate()
		stdout_text = stdout.decode(errors="replace") if stdout else ""
		stderr_text = stderr.decode(errors="replace") if stderr else ""

		if process.returncode != 0:
			return SessionPoll(
				session_id=session_id,
				status=SessionStatus.FAILED,
				output=stdout_text or None,
				error=stderr_text.strip() or f"Exit code {process.returncode}",
			)
		return SessionPoll(session_id=session_id, status=SessionStatus.COMPLETED, output=stdout_text)

	async def poll(self, session_id: str) -> SessionPoll:
		"""Report the current state of a session."""
		task = self._sessions.get(session_id)
		if task is None:
			return SessionPoll(
				session_id=session_id,
				status=SessionStatus.FAILED,
				error=f"Unknown session: {session_id}",
			)
		if not task.done():
			return SessionPoll(session_id=session_id, status=SessionStatus.STARTED)

		del self._sessions[session_id]
		try:
			return task.result()
		except Exception as e:
			return SessionPoll(session_id=session_id, status=SessionStatus.FAILED, error=str(e))

	def release(self, session_id: str) -> None:
		"""
		Forget a session the caller has given up on.

		The process is left to finish; its entry is dropped as soon as it
		exits, since nobody will poll it again.
		"""
		task = self._sessions.get(session_id)
		if task is None:
			return
		if task.done():
			del self._sessions[session_id]
		else:
			task.add_done_callback(lambda _: self._sessions.pop(session_id, None))

	@property
	def active_sessions(self) -> int:
		return sum(1 for task in self._sessions.values() if not task.done())

	@property
	def tracked_sessions(self) -> int:
		return len(self._sessions)


def release_session(worker: Worker, session_id: str) -> None:
	"""Tell `worker` a session was abandoned, if it keeps per-session state."""
	release = getattr(worker, "release", None)
	if release is not None:
		release(session_id)


async def run_session(
	worker: Worker,
	description: str,
	context: NodeContext,
	poll_interval: float = 2.0,
	max_polls: int = 30,
) -> SessionPoll:
	"""
	Start one session and poll it until it finishes.

	Raises:
		WorkerLaunchFailure: If the session could not be started
		WorkerTimeout: If it is still running after `max_polls` polls
	"""
	session_id = await worker.start(description, context)
	for _ in range(max_polls):
		await asyncio.sleep(poll_interval)
		result = await worker.poll(session_id)
		if result.is_done:
			return result
	release_session(worker, session_id)
	raise WorkerTimeout(f"Session {session_id} did not finish after {max_polls} polls")
