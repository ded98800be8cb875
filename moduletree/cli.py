"""Command line interface for inspecting module trees.

Trees are YAML files in fragment shape: mappings are directories, strings
are aliases, and lists are units (strings are dependencies, a mapping is
the unit's export record).

    moduletree resolve tree.yaml ./lib/util
    moduletree show tree.yaml
    moduletree eval tree.yaml pkg
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import click
import yaml
from pydantic import ValidationError
from rich.panel import Panel
from rich.tree import Tree

from .config import InstallerOptions
from .config import load_options
from .console import console
from .console import error_console
from .errors import InstallerError
from .installer import Installer
from .installer import make_installer
from .logging_setup import init_json_logging
from .nodes import Alias
from .nodes import Factory
from .nodes import Node
from .nodes import Stub
from .scheduler import ManualDefer
from .utils.error_format import escape_markup
from .utils.error_format import format_error_message

logger = logging.getLogger(__name__)


def load_tree(path: Path) -> dict[str, Any]:
    """Read a YAML tree file.

    Raises:
        click.BadParameter: The file is not a mapping at top level
    """
    with open(path, encoding="utf-8") as f:
        tree = yaml.safe_load(f) or {}
    if not isinstance(tree, dict):
        raise click.BadParameter(f"{path} must contain a mapping at top level", param_hint="TREE")
    return tree


def build_installer(ctx: click.Context, tree_path: Path, extensions: tuple[str, ...]) -> tuple[Installer, ManualDefer]:
    options: InstallerOptions = ctx.obj["options"]
    if extensions:
        options = options.merged_with({"extensions": extensions})
    defer = ManualDefer()
    installer = make_installer(options, defer=defer)
    try:
        installer.install(load_tree(tree_path))
        defer.run_until_idle()
    except InstallerError as e:
        _show_error("Invalid tree", e)
        ctx.exit(1)
    return installer, defer


def _show_error(title: str, error: BaseException) -> None:
    error_console.print(
        Panel(escape_markup(format_error_message(error)), title=f"[bold red]{title}[/bold red]", border_style="red")
    )


def _from_node(installer: Installer, from_id: str | None) -> Node:
    if not from_id:
        return installer.root
    node = installer.resolver.append_id(installer.root, from_id)
    if node is None:
        raise click.BadParameter(f"'{from_id}' is not installed", param_hint="--from")
    return node


@click.group(invoke_without_command=True)
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Settings YAML file (default: ~/.moduletree and ./.moduletree scopes)",
)
@click.option("--log-file", type=click.Path(dir_okay=False), help="Write JSONL logs to this file")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level for --log-file",
)
@click.pass_context
def main(ctx: click.Context, settings_path: Path | None, log_file: str | None, log_level: str | None):
    """Resolve and evaluate identifiers in a virtual module tree."""
    if log_file:
        init_json_logging(log_file, log_level)

    try:
        options = load_options(settings_path)
    except ValidationError as e:
        _show_error("Invalid settings", e)
        ctx.exit(2)

    ctx.ensure_object(dict)
    ctx.obj["options"] = options

    if ctx.invoked_subcommand is None:
        click.echo("\n" + ctx.get_help())
        ctx.exit()


@main.command("resolve")
@click.argument("tree_path", metavar="TREE", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("identifier")
@click.option("--from", "from_id", help="Identity to resolve from (default: tree root)")
@click.option("--ext", "extensions", multiple=True, help="Extension to try (repeatable, replaces defaults)")
@click.pass_context
def resolve_cmd(ctx: click.Context, tree_path: Path, identifier: str, from_id: str | None, extensions: tuple[str, ...]):
    """Print the identity IDENTIFIER resolves to."""
    installer, _ = build_installer(ctx, tree_path, extensions)
    node = _from_node(installer, from_id)
    try:
        identity = installer.evaluator.require_for(node).resolve(identifier)
    except InstallerError as e:
        _show_error("Not found", e)
        ctx.exit(1)
    console.print(identity, highlight=False)


@main.command("eval")
@click.argument("tree_path", metavar="TREE", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("identifier")
@click.option("--ext", "extensions", multiple=True, help="Extension to try (repeatable, replaces defaults)")
@click.pass_context
def eval_cmd(ctx: click.Context, tree_path: Path, identifier: str, extensions: tuple[str, ...]):
    """Evaluate IDENTIFIER from the tree root and print its exports as JSON."""
    installer, defer = build_installer(ctx, tree_path, extensions)
    try:
        exports = installer.require(identifier)
        defer.run_until_idle()
    except InstallerError as e:
        _show_error("Evaluation failed", e)
        ctx.exit(1)
    click.echo(json.dumps(exports, indent=2, sort_keys=True, default=repr))


def _label(name: str, node: Node) -> str:
    contents = node.contents
    name = escape_markup(name)
    if isinstance(contents, Alias):
        return f"[cyan]{name}[/cyan] [dim]->[/dim] {escape_markup(contents.target)}"
    if isinstance(contents, Stub):
        return f"[yellow]{name}[/yellow] [dim](stub)[/dim]"
    if isinstance(contents, Factory):
        deps = f" [dim]deps: {escape_markup(', '.join(contents.deps))}[/dim]" if contents.deps else ""
        return f"[green]{name}[/green]{deps}"
    if node.is_directory:
        return f"[bold blue]{name}/[/bold blue]"
    return f"[red]{name}[/red] [dim](absent)[/dim]"


def _add_children(branch: Tree, node: Node) -> None:
    for name, child in sorted(node.children()):
        sub = branch.add(_label(name, child))
        if child.is_directory:
            _add_children(sub, child)


@main.command("show")
@click.argument("tree_path", metavar="TREE", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def show_cmd(ctx: click.Context, tree_path: Path):
    """Render the installed tree."""
    installer, _ = build_installer(ctx, tree_path, ())
    tree = Tree(f"[bold]{escape_markup(tree_path.name)}[/bold]")
    _add_children(tree, installer.root)
    console.print(tree)


if __name__ == "__main__":
    main()
