"""Tests for maker-orchestrator."""
