"""CLI for maker-orchestrator: run, resume, status and serve commands."""

import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from .config import Config, load_config
from .logging_config import setup_logging
from .orchestrator.engine import MakerOrchestrator, summarize
from .orchestrator.escalation import AutoEscalationGate, ConsoleEscalationGate, EscalationGate
from .tree.models import RedFlagSeverity, TaskNode, TaskStatus
from .tree.store import PersistenceWriteFailure, StateLoadError, StateStore
from .visualizer import render_run_summary, render_task_tree
from .worker import CLIWorker


def _state_store(config: Config, args: argparse.Namespace) -> StateStore:
	state_file = getattr(args, "state_file", None)
	return StateStore(Path(state_file) if state_file else config.state_file)


def _gate(args: argparse.Namespace, console: Console) -> EscalationGate:
	policy = getattr(args, "auto_escalate", None)
	if policy:
		return AutoEscalationGate(policy)
	return ConsoleEscalationGate(console)


def _orchestrator(config: Config, args: argparse.Namespace, console: Console, model: str) -> MakerOrchestrator:
	worker = CLIWorker(
		command=config.worker_command,
		model=model,
		cwd=config.worker_cwd or None,
	)
	return MakerOrchestrator(
		worker=worker,
		gate=_gate(args, console),
		store=_state_store(config, args),
	)


def _report(root: TaskNode, console: Console) -> int:
	"""Print the final tree and return the process exit code."""
	render_task_tree(root, console)
	if root.status == TaskStatus.COMPLETED:
		console.print("[green]Run completed.[/green]")
		return 0
	reason = root.context.failure_reason or root.status.value
	console.print(f"[red]Run did not complete: {escape(reason)}[/red]")
	return 1


def cmd_run(args: argparse.Namespace) -> None:
	"""Start a new run for an idea."""
	config = load_config()
	setup_logging(level=args.log_level, log_dir=config.log_dir)
	console = Console()

	idea = " ".join(args.idea).strip()
	if not idea:
		console.print("[red]Error: Please provide an idea for the run.[/red]")
		sys.exit(1)

	try:
		run_config = config.run_config(
			max_recursion_depth=args.max_depth,
			voting_threshold=args.threshold,
			model_name=args.model,
			red_flag_severity_threshold=args.severity,
		)
	except ValueError as e:
		console.print(f"[red]Error: invalid configuration: {escape(str(e))}[/red]")
		sys.exit(1)

	orchestrator = _orchestrator(config, args, console, run_config.model_name)
	try:
		root = asyncio.run(orchestrator.run(idea, run_config, repo=args.repo))
	except PersistenceWriteFailure as e:
		console.print(f"[red]Error: {escape(str(e))}[/red]")
		sys.exit(1)

	sys.exit(_report(root, console))


def cmd_resume(args: argparse.Namespace) -> None:
	"""Resume the stored run."""
	config = load_config()
	setup_logging(level=args.log_level, log_dir=config.log_dir)
	console = Console()

	store = _state_store(config, args)
	try:
		state = store.load()
	except StateLoadError as e:
		console.print(f"[red]Error: {escape(str(e))}[/red]")
		sys.exit(1)

	model = state.config.model_name if state.config else config.model_name
	orchestrator = _orchestrator(config, args, console, model)
	try:
		root = asyncio.run(orchestrator.resume())
	except (StateLoadError, PersistenceWriteFailure) as e:
		console.print(f"[red]Error: {escape(str(e))}[/red]")
		sys.exit(1)

	sys.exit(_report(root, console))


def cmd_status(args: argparse.Namespace) -> None:
	"""Show the stored run."""
	config = load_config()
	console = Console()

	store = _state_store(config, args)
	if not store.exists():
		console.print("[dim]No run found.[/dim]")
		return

	try:
		state = store.load()
	except StateLoadError as e:
		console.print(f"[red]Error: {escape(str(e))}[/red]")
		sys.exit(1)

	if state.root is None:
		console.print("[dim]No run found.[/dim]")
		return

	if args.summary:
		render_run_summary(summarize(state), console)
	else:
		render_task_tree(state.root, console)


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the MCP server (stdio transport)."""
	from .server import mcp
	mcp.run()


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="maker-orchestrator",
		description="Recursive task decomposition with consensus voting over agent workers",
	)
	subparsers = parser.add_subparsers(dest="command")

	# run
	run_parser = subparsers.add_parser("run", help="Start a new run for an idea")
	run_parser.add_argument("idea", nargs="*", help="High-level idea or goal")
	run_parser.add_argument("--repo", type=str, default=None, help="Repository handle passed to workers")
	run_parser.add_argument("--max-depth", type=int, default=None, help="Maximum recursion depth")
	run_parser.add_argument("--threshold", type=int, default=None, help="Voting margin k")
	run_parser.add_argument("--model", type=str, default=None, help="Model name passed to the worker")
	run_parser.add_argument(
		"--severity",
		choices=[s.value for s in RedFlagSeverity],
		default=None,
		help="Minimum red-flag severity to log as a warning",
	)
	run_parser.set_defaults(func=cmd_run)

	# resume
	resume_parser = subparsers.add_parser("resume", help="Resume the stored run")
	resume_parser.set_defaults(func=cmd_resume)

	for sub in (run_parser, resume_parser):
		sub.add_argument("--state-file", type=str, default=None, help="Snapshot path (default: data dir)")
		sub.add_argument(
			"--auto-escalate",
			choices=list(AutoEscalationGate.POLICIES),
			default=None,
			help="Resolve escalations without prompting",
		)
		sub.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, WARNING or ERROR")

	# status
	status_parser = subparsers.add_parser("status", help="Show the stored run")
	status_parser.add_argument("--state-file", type=str, default=None, help="Snapshot path (default: data dir)")
	status_parser.add_argument("--summary", action="store_true", help="Show summary panel instead of tree")
	status_parser.set_defaults(func=cmd_status)

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio)")
	serve_parser.set_defaults(func=cmd_serve)

	return parser


def main(argv: list[str] | None = None) -> None:
	"""CLI entry point."""
	parser = build_parser()
	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)
