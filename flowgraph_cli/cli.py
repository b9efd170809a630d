"""Typer-based CLI for FlowGraph call-graph and control-flow diagrams."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .clustering import apply_clustering, clustering_summary, load_clustering, validate_clustering
from .config import CONFIG_FILE, DEFAULT_SETTINGS, load_settings, save_settings
from .control_flow import build_control_flow
from .errors import FlowGraphError
from .graph_export import render_call_graph_dot, render_control_flow_dot, render_json, write_output
from .graph_ops import get_high_level_graph, get_selective_high_level_graph
from .models import Graph
from .parser import CallGraphParser

app = typer.Typer(
    help="FlowGraph: call graphs and control-flow graphs as Graphviz diagrams.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console(stderr=True)

FORMATS = {"dot", "json"}


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"FlowGraph CLI v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr."),
):
    """FlowGraph CLI: turn source projects into clustered call graphs and CFGs."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


def _check_format(fmt: str) -> str:
    fmt = fmt.lower()
    if fmt not in FORMATS:
        raise typer.BadParameter(f"Format must be one of: {', '.join(sorted(FORMATS))}")
    return fmt


def _fail(exc: Exception) -> None:
    console.print(f"[red]Error:[/red] {exc}")
    raise typer.Exit(code=1)


def _emit(content: str, output: Optional[Path], graph: Graph, title: str) -> None:
    """Write *content* to *output* (with a summary) or to stdout."""
    if output is None:
        typer.echo(content, nl=False)
        return
    path = write_output(content, output)
    table = Table(title=title, show_header=False)
    table.add_row("Nodes", str(len(graph.nodes)))
    table.add_row("Edges", str(len(graph.edges)))
    table.add_row("Written to", str(path))
    console.print(table)


def _resolve_output(output: Optional[Path], settings: dict) -> Optional[Path]:
    if output is None or output.is_absolute() or not settings.get("output_dir"):
        return output
    return Path(settings["output_dir"]).expanduser() / output


@app.command("callgraph")
def callgraph(
    project_path: Path = typer.Argument(..., exists=True, file_okay=False, help="Path to source project."),
    high_level: bool = typer.Option(False, "--high-level", help="Collapse every cluster to a single node."),
    clusters: Optional[List[str]] = typer.Option(
        None,
        "--clusters",
        "-c",
        help="Per-cluster depth, e.g. 'all:0,-src/api.ts:1'. Repeatable.",
    ),
    clustering_file: Optional[Path] = typer.Option(
        None, "--clustering", exists=True, dir_okay=False, help="Clustering JSON to group functions by domain.",
    ),
    focus: str = typer.Option("", "--focus", help="Only show nodes matching this text and their neighbours."),
    fmt: str = typer.Option("dot", "--format", "-f", help="Output format: dot or json."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file path (default: stdout)."),
):
    """Build the project's call graph and render it."""
    fmt = _check_format(fmt)
    settings = load_settings(project_path)
    try:
        parser = CallGraphParser(
            project_path.resolve(),
            languages=settings["languages"],
            skip_dirs=settings["skip_dirs"],
        )
        graph = parser.parse_project()
        if clustering_file is not None:
            response = load_clustering(clustering_file)
            for problem in validate_clustering(response):
                console.print(f"[yellow]Warning:[/yellow] {problem}")
            graph = apply_clustering(graph, response)
        if clusters:
            graph = get_selective_high_level_graph(graph, clusters)
        elif high_level:
            graph = get_high_level_graph(graph)
    except FlowGraphError as exc:
        _fail(exc)

    if fmt == "json":
        content = render_json(graph) + "\n"
    else:
        content = render_call_graph_dot(graph, focus=focus)
    _emit(content, _resolve_output(output, settings), graph, "Call graph")


@app.command("flow")
def flow(
    project_path: Path = typer.Argument(..., exists=True, file_okay=False, help="Path to source project."),
    function_name: str = typer.Argument(..., help="Function or Class.method to analyse."),
    file_filter: Optional[str] = typer.Option(None, "--file", help="Only search files whose path contains this."),
    fmt: str = typer.Option("dot", "--format", "-f", help="Output format: dot or json."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file path (default: stdout)."),
):
    """Build and render the control-flow graph of one function."""
    fmt = _check_format(fmt)
    settings = load_settings(project_path)
    try:
        graph = build_control_flow(project_path.resolve(), function_name, file_filter, settings=settings)
    except FlowGraphError as exc:
        _fail(exc)

    if fmt == "json":
        content = render_json(graph) + "\n"
    else:
        content = render_control_flow_dot(graph, function_name)
    _emit(content, _resolve_output(output, settings), graph, f"{function_name} control flow")


@app.command("clusters")
def clusters_cmd(
    project_path: Path = typer.Argument(..., exists=True, file_okay=False, help="Path to source project."),
    clustering_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Clustering JSON file."),
):
    """Validate a clustering against the project and summarise it."""
    settings = load_settings(project_path)
    try:
        response = load_clustering(clustering_file)
        graph = CallGraphParser(
            project_path.resolve(),
            languages=settings["languages"],
            skip_dirs=settings["skip_dirs"],
        ).parse_project()
    except FlowGraphError as exc:
        _fail(exc)

    problems = validate_clustering(response)
    unknown = sorted({n for c in response.clusters for n in c.nodes if n not in graph.nodes})
    problems += [f"Node '{n}' is not in the call graph" for n in unknown]

    typer.echo(clustering_summary(response))
    if problems:
        for problem in problems:
            console.print(f"[red]-[/red] {problem}")
        raise typer.Exit(code=1)
    console.print("[green]Clustering is valid.[/green]")


@app.command("settings")
def show_settings(
    project_path: Optional[Path] = typer.Argument(None, file_okay=False, help="Project whose .flowgraph.toml applies."),
):
    """Show the effective settings."""
    settings = load_settings(project_path)
    table = Table(title=f"Settings ({CONFIG_FILE})")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in settings.items():
        table.add_row(key, json.dumps(value))
    Console().print(table)


@app.command("set")
def set_setting(
    key: str = typer.Argument(..., help="Setting name, e.g. statement_label_limit."),
    value: str = typer.Argument(..., help="New value. Lists are comma-separated."),
):
    """Save one setting to the home config file.

    Examples:
        flowgraph set statement_label_limit 80
        flowgraph set skip_dirs generated,fixtures
    """
    if key not in DEFAULT_SETTINGS:
        console.print(f"[red]Error:[/red] Unknown setting '{key}'. Choose from: {', '.join(DEFAULT_SETTINGS)}")
        raise typer.Exit(code=1)

    default = DEFAULT_SETTINGS[key]
    parsed: Any = value
    if isinstance(default, list):
        parsed = [v.strip() for v in value.split(",") if v.strip()]
    elif isinstance(default, int):
        try:
            parsed = int(value)
        except ValueError:
            console.print(f"[red]Error:[/red] {key} must be an integer, got '{value}'")
            raise typer.Exit(code=1)

    # Project overrides stay in .flowgraph.toml; only the home file is written.
    settings = load_settings()
    settings[key] = parsed
    path = save_settings(settings)
    console.print(f"[green]Saved[/green] {key} = {json.dumps(parsed)} to {path}")


if __name__ == "__main__":
    app()
