"""Rich views for run progress visualization."""

from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.tree import Tree

from .orchestrator.escalation import preview
from .tree.models import TaskNode, TaskStatus

STATUS_ICONS = {
	TaskStatus.PENDING: "[dim][ ][/dim]",
	TaskStatus.IN_PROGRESS: "[yellow][~][/yellow]",
	TaskStatus.COMPLETED: "[green]\\[x][/green]",
	TaskStatus.FAILED: "[red][!][/red]",
}


def _label(node: TaskNode) -> str:
	icon = STATUS_ICONS.get(node.status, "[ ]")
	label = f"{icon} {escape(node.description)}"
	if node.is_minimal:
		label += " [dim](minimal)[/dim]"
	if node.context.confidence is not None:
		label += f" [cyan]{node.context.confidence:.0%}[/cyan]"
	if node.status == TaskStatus.FAILED and node.context.failure_reason:
		label += f" [red]- {escape(node.context.failure_reason)}[/red]"
	return label


def build_task_tree(root: TaskNode) -> Tree:
	"""Build a Rich Tree mirroring the task tree."""
	tree = Tree(f"[bold]{_label(root)}[/bold]")
	_add_children(tree, root)
	return tree


def _add_children(branch: Tree, node: TaskNode) -> None:
	for child in node.children:
		_add_children(branch.add(_label(child)), child)


def render_task_tree(root: TaskNode, console: Optional[Console] = None) -> None:
	"""Render a task tree."""
	console = console or Console()
	console.print(build_task_tree(root))


def render_run_summary(summary: dict[str, Any], console: Optional[Console] = None) -> None:
	"""Render a summary panel for a run snapshot (see orchestrator.engine.summarize)."""
	console = console or Console()

	if not summary.get("exists"):
		console.print("[dim]No run found.[/dim]")
		return

	counts = summary["counts"]
	lines = [
		f"[bold]Idea:[/bold] {escape(preview(summary['idea']))}",
		f"[bold]Status:[/bold] {summary['root_status']}",
		f"[bold]Progress:[/bold] {counts[TaskStatus.COMPLETED.value]}/{summary['total_nodes']} tasks "
		f"({summary['completion']:.0%})",
		f"[bold]Leaves:[/bold] {summary['leaves']}",
		f"[bold]Failed:[/bold] {counts[TaskStatus.FAILED.value]}",
	]

	config = summary.get("config")
	if config:
		lines.append("")
		lines.append(
			f"[bold]Config:[/bold] depth<={config['max_recursion_depth']}, "
			f"k={config['voting_threshold']}, model={config['model_name']}"
		)

	metadata = summary.get("metadata") or {}
	for key in ("started_at", "finished_at"):
		if key in metadata:
			lines.append(f"[bold]{key.replace('_', ' ').capitalize()}:[/bold] {metadata[key]}")

	border = "green" if summary["succeeded"] else "cyan"
	console.print(Panel("\n".join(lines), title="Run", border_style=border))
