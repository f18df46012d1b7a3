"""Orchestrator module - Decomposition, red-flag filtering, voting, escalation and the run engine."""

from .decomposer import DecompositionEngine, DecompositionParseFailure, DecompositionResult
from .engine import MakerOrchestrator, summarize
from .escalation import AutoEscalationGate, ConsoleEscalationGate, EscalationGate
from .red_flags import RedFlagVerdict, check_red_flags
from .voting import ConsensusNotReached, ConsensusVotingEngine, VoteOutcome, VoteTally

__all__ = [
	"AutoEscalationGate",
	"ConsensusNotReached",
	"ConsensusVotingEngine",
	"ConsoleEscalationGate",
	"DecompositionEngine",
	"DecompositionParseFailure",
	"DecompositionResult",
	"EscalationGate",
	"MakerOrchestrator",
	"RedFlagVerdict",
	"VoteOutcome",
	"VoteTally",
	"check_red_flags",
	"summarize",
]
