"""
Voting - First-to-ahead-by-k consensus over sampled worker outputs.

For a minimal task the engine runs up to `max_rounds` rounds. Each round
starts `batch_size` worker sessions at once, polls them until they finish
or the poll budget runs out, drops red-flagged outputs and counts the rest
by their trimmed text. A candidate wins as soon as its votes are at least
`k` more than the runner-up's. If no one gets there, the escalation gate
picks from the ranked candidates or vetoes them all.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from ..tree.models import Candidate, RunConfig, TaskNode
from ..worker import SessionPoll, SessionStatus, Worker, WorkerError, release_session
from .escalation import EscalationGate
from .red_flags import check_red_flags

logger = logging.getLogger(__name__)

NO_WINNER = -1


class ConsensusNotReached(Exception):
	"""Raised when the sampling budget runs out without a candidate ahead by k."""
	pass


@dataclass
class VoteOutcome:
	"""Result of voting on one task."""
	winner_index: int
	confidence: float
	rationale: str
	votes: dict[int, int] = field(default_factory=dict)

	@property
	def has_winner(self) -> bool:
		return self.winner_index != NO_WINNER


class VoteTally:
	"""
	Votes per distinct candidate text.

	Candidates keep the index of their first appearance; that index breaks
	ties between equal vote counts.
	"""

	def __init__(self):
		self.candidates: list[str] = []
		self.votes: dict[int, int] = {}
		self.total_votes = 0
		self._index: dict[str, int] = {}

	@staticmethod
	def canonicalize(text: str) -> str:
		return text.strip()

	def register(self, text: str) -> int:
		"""Cast one vote for `text`; returns the candidate index."""
		content = self.canonicalize(text)
		index = self._index.get(content)
		if index is None:
			index = len(self.candidates)
			self._index[content] = index
			self.candidates.append(content)
			self.votes[index] = 0
		self.votes[index] += 1
		self.total_votes += 1
		return index

	def ranked(self) -> list[int]:
		"""Candidate indices by votes descending, first-seen first on ties."""
		return sorted(self.votes, key=lambda i: (-self.votes[i], i))

	def margin(self) -> tuple[Optional[int], int]:
		"""Return (leader index, leader votes minus runner-up votes)."""
		ranked = self.ranked()
		if not ranked:
			return None, 0
		leader_votes = self.votes[ranked[0]]
		runner_up_votes = self.votes[ranked[1]] if len(ranked) > 1 else 0
		return ranked[0], leader_votes - runner_up_votes

	def leader_ahead_by(self, k: int) -> Optional[int]:
		"""The leader's index if it is at least `k` votes ahead, else None."""
		leader, margin = self.margin()
		if leader is not None and margin >= k:
			return leader
		return None

	def __len__(self) -> int:
		return len(self.candidates)


class ConsensusVotingEngine:
	"""Samples, filters and tallies candidate solutions for minimal tasks."""

	def __init__(self, worker: Worker, gate: EscalationGate):
		self.worker = worker
		self.gate = gate

	async def vote(self, task: TaskNode, config: RunConfig) -> VoteOutcome:
		"""
		Run consensus voting for `task`.

		On success the winning text becomes the task result and the
		candidates and vote counts are kept on the task context.

		Returns:
			VoteOutcome; winner_index is NO_WINNER when nothing was accepted
		"""
		logger.info(f"Starting voting for task {task.id}")
		tally = VoteTally()

		try:
			winner = await self._sample_until_quorum(task, config, tally)
		except ConsensusNotReached as e:
			if not tally.candidates:
				logger.warning(f"Task {task.id}: no valid candidates after {config.max_rounds} rounds")
				return VoteOutcome(
					winner_index=NO_WINNER,
					confidence=0.0,
					rationale="No valid candidates found.",
				)
			logger.warning(f"Task {task.id}: {e}. Escalating {len(tally)} candidate(s).")
			winner = await self._escalate(task, tally)
			if winner is None:
				logger.info(f"Task {task.id}: all candidates vetoed")
				return VoteOutcome(
					winner_index=NO_WINNER,
					confidence=0.0,
					rationale="User vetoed all candidates.",
				)
			logger.info(f"Task {task.id}: user selected candidate {winner}")

		winner_votes = tally.votes[winner]
		confidence = winner_votes / tally.total_votes if tally.total_votes else 0.0

		task.result = tally.candidates[winner]
		task.context.candidates = [
			Candidate(id=f"candidate-{i}", text=text) for i, text in enumerate(tally.candidates)
		]
		task.context.vote_counts = dict(tally.votes)
		task.context.confidence = confidence

		return VoteOutcome(
			winner_index=winner,
			confidence=confidence,
			rationale=f"Winner selected with {winner_votes} votes (Total: {tally.total_votes}).",
			votes=dict(tally.votes),
		)

	async def _sample_until_quorum(self, task: TaskNode, config: RunConfig, tally: VoteTally) -> int:
		k = config.voting_threshold
		for round_number in range(1, config.max_rounds + 1):
			logger.info(
				f"Task {task.id} round {round_number}/{config.max_rounds}: "
				f"sampling {config.batch_size} candidates"
			)
			for poll in await self.run_round(task, config):
				self._count(task, poll, tally, config)

			winner = tally.leader_ahead_by(k)
			if winner is not None:
				_, margin = tally.margin()
				logger.info(f"Task {task.id}: candidate {winner} is ahead by {margin} (threshold: {k})")
				return winner

		raise ConsensusNotReached(f"No candidate ahead by {k} after {config.max_rounds} rounds")

	async def run_round(self, task: TaskNode, config: RunConfig) -> list[SessionPoll]:
		"""Start one batch of sessions and collect their results."""
		started = await asyncio.gather(*(self._start(task) for _ in range(config.batch_size)))
		session_ids = [session_id for session_id in started if session_id is not None]
		return await self._poll_batch(session_ids, config)

	async def _start(self, task: TaskNode) -> Optional[str]:
		try:
			return await self.worker.start(task.description, task.context)
		except WorkerError as e:
			logger.warning(f"Task {task.id}: failed to start worker session: {e}")
			return None

	async def _poll_batch(self, session_ids: list[str], config: RunConfig) -> list[SessionPoll]:
		results: dict[str, SessionPoll] = {}

		for _ in range(config.max_polls):
			if len(results) == len(session_ids):
				break
			await asyncio.sleep(config.poll_interval)

			pending = [session_id for session_id in session_ids if session_id not in results]
			polls = await asyncio.gather(*(self._poll(session_id) for session_id in pending))
			for session_id, poll in zip(pending, polls):
				if poll.is_done:
					results[session_id] = poll

		polls = []
		for session_id in session_ids:
			poll = results.get(session_id)
			if poll is None:
				release_session(self.worker, session_id)
				poll = SessionPoll(session_id=session_id, status=SessionStatus.FAILED, error="Timeout")
			polls.append(poll)
		return polls

	async def _poll(self, session_id: str) -> SessionPoll:
		try:
			return await self.worker.poll(session_id)
		except WorkerError as e:
			logger.error(f"Error polling session {session_id}: {e}")
			return SessionPoll(session_id=session_id, status=SessionStatus.FAILED, error=str(e))

	def _count(self, task: TaskNode, poll: SessionPoll, tally: VoteTally, config: RunConfig) -> None:
		if poll.status != SessionStatus.COMPLETED or not poll.output:
			logger.warning(
				f"Task {task.id}: session {poll.session_id} produced no candidate ({poll.error or 'no output'})"
			)
			return

		verdict = check_red_flags(poll.output)
		if verdict.flagged:
			level = logging.WARNING if verdict.severity.at_least(config.red_flag_severity_threshold) else logging.DEBUG
			logger.log(
				level,
				f"Task {task.id}: red flag ({verdict.severity.value}) on session {poll.session_id}: {verdict.reason}",
			)
			return

		index = tally.register(poll.output)
		logger.debug(f"Task {task.id}: vote for candidate {index} (now {tally.votes[index]})")

	async def _escalate(self, task: TaskNode, tally: VoteTally) -> Optional[int]:
		"""Ask the gate to pick among ranked candidates; returns a tally index or None."""
		ranked = tally.ranked()
		choice = await self.gate.present(task, [tally.candidates[i] for i in ranked])
		if choice is None or not 0 <= choice < len(ranked):
			return None
		return ranked[choice]
