"""maker-orchestrator: recursive task decomposition with consensus voting."""

__version__ = "0.1.0"
