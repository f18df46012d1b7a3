"""
Red-flag filter - Rejects unreliable candidate outputs before voting.

Rules run in a fixed order and the first one that fires decides:
1. Too short
2. Refusal / uncertainty phrases
3. Explicit error or exception markers
4. Degenerate repetition
5. Code without fenced blocks (low severity)

Any flagged verdict keeps the candidate out of the tally; severity is
informational.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from ..tree.models import RedFlagSeverity

MIN_OUTPUT_LENGTH = 10
REPETITION_MIN_LINES = 10
REPETITION_UNIQUE_RATIO = 0.5

FORBIDDEN_PATTERNS = [
	(re.compile(r"I\s+don['’]?t\s+know", re.IGNORECASE), "Agent expressed uncertainty."),
	(re.compile(r"as an AI", re.IGNORECASE), "Agent used generic AI disclaimer."),
	(re.compile(r"I['’]m sorry, but", re.IGNORECASE), "Agent refused to perform the task."),
	(re.compile(r"cannot fulfill this request", re.IGNORECASE), "Agent refused to perform the task."),
	(re.compile(r"unable to process", re.IGNORECASE), "Agent reported inability to process."),
]

ERROR_PREFIX = re.compile(r"^Error:", re.IGNORECASE)
ERROR_MARKERS = re.compile(r"Exception:|Traceback", re.IGNORECASE)

CODE_KEYWORDS = re.compile(
	r"\b(?:function|class|import|const|let|var|def|package|public|private)\s+",
	re.IGNORECASE,
)
CODE_FENCE = "```"


@dataclass
class RedFlagVerdict:
	"""Outcome of checking one candidate."""
	flagged: bool
	severity: RedFlagSeverity = RedFlagSeverity.LOW
	reason: Optional[str] = None
	suggestions: list[str] = field(default_factory=list)


def check_red_flags(output: str) -> RedFlagVerdict:
	"""Classify a candidate output."""
	text = output.strip()

	if len(text) < MIN_OUTPUT_LENGTH:
		return RedFlagVerdict(
			flagged=True,
			severity=RedFlagSeverity.CRITICAL,
			reason="Output is too short to be a valid solution.",
			suggestions=["Provide a more detailed explanation or implementation."],
		)

	for pattern, reason in FORBIDDEN_PATTERNS:
		if pattern.search(text):
			return RedFlagVerdict(
				flagged=True,
				severity=RedFlagSeverity.MEDIUM,
				reason=reason,
				suggestions=["Ensure the agent provides a direct answer without disclaimers."],
			)

	if ERROR_PREFIX.search(text) or ERROR_MARKERS.search(text):
		return RedFlagVerdict(
			flagged=True,
			severity=RedFlagSeverity.CRITICAL,
			reason="Output contains an explicit error or exception message.",
			suggestions=["Debug the underlying issue causing the error."],
		)

	lines = text.split("\n")
	if len(lines) > REPETITION_MIN_LINES:
		unique = {line.strip() for line in lines}
		if len(unique) < len(lines) * REPETITION_UNIQUE_RATIO:
			return RedFlagVerdict(
				flagged=True,
				severity=RedFlagSeverity.MEDIUM,
				reason="Output contains excessive repetition.",
				suggestions=["Check for infinite loops or repetitive generation patterns."],
			)

	if CODE_KEYWORDS.search(text) and CODE_FENCE not in text:
		return RedFlagVerdict(
			flagged=True,
			severity=RedFlagSeverity.LOW,
			reason="Output contains code keywords but lacks markdown code blocks.",
			suggestions=["Wrap code snippets in markdown code blocks."],
		)

	return RedFlagVerdict(flagged=False)
