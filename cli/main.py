"""CLI entry point for branch-chat."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from branchchat.config import AppConfig, ConfigError, load_config
from branchchat.detection import DetectionResult, detect, should_auto_branch
from branchchat.engine import BranchingEngine
from branchchat.errors import BranchChatError
from branchchat.llm import LLMManager, Provider, StreamChunk
from branchchat.models import Message
from branchchat.storage import (
    load_snapshot,
    restore_tree,
    save_snapshot,
    snapshot_filename,
    snapshot_tree,
)
from branchchat.store import ConversationStore
from branchchat.tree import ConversationTree
from branchchat.view import ViewStateMachine

app = typer.Typer(
    name="branchchat",
    help="Chat with LLMs in a branching conversation tree",
)
console = Console()

ROLE_COLORS = {"user": "blue", "assistant": "green", "system": "magenta"}
STATUS_STYLES = {
    "pending": "[dim]… pending[/dim]",
    "streaming": "[yellow]⟳ streaming[/yellow]",
    "completed": "[green]✓[/green]",
    "error": "[red]✗ error[/red]",
}

CHAT_HELP = (
    "[dim]Commands: /tree, /branches, /switch <id-prefix>, /regen, "
    "/edit <text>, /save [file], /help, /quit[/dim]"
)


# =============================================================================
# Setup Helpers
# =============================================================================


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
):
    """Chat with LLMs in a branching conversation tree."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


def _load_app_config(config_path: Path | None) -> AppConfig:
    """Load configuration, exiting with a readable message on failure."""
    try:
        return load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e.message}")
        if e.details:
            for detail in e.details:
                console.print(f"  [dim]• {detail}[/dim]")
        raise typer.Exit(1)


def _apply_overrides(
    config: AppConfig,
    provider: str | None,
    model: str | None,
    no_stream: bool = False,
) -> AppConfig:
    """Apply command-line overrides to the LLM settings."""
    updates = {}
    if provider is not None:
        try:
            updates["provider"] = Provider(provider)
        except ValueError:
            valid = ", ".join(p.value for p in Provider)
            console.print(f"[red]Unknown provider: {provider}[/red]")
            console.print(f"[dim]Valid options: {valid}[/dim]")
            raise typer.Exit(1)
        # A model configured for another provider no longer applies
        if model is None and updates["provider"] != config.llm.provider:
            updates["model"] = None
    if model is not None:
        updates["model"] = model
    if no_stream:
        updates["stream"] = False

    if updates:
        config = config.model_copy(update={"llm": config.llm.model_copy(update=updates)})
    return config


def _build_engine(config: AppConfig) -> tuple[ConversationStore, BranchingEngine, ViewStateMachine]:
    """Wire a store, view and engine from configuration."""
    store = ConversationStore()
    view = ViewStateMachine(focus_ratio=config.view.focus_ratio)
    store.subscribe(view.handle_tree_event)
    engine = BranchingEngine(
        store,
        llm=LLMManager(ollama_base_url=config.llm.ollama_base_url),
        llm_settings=config.llm,
        branching=config.branching,
    )
    return store, engine, view


# =============================================================================
# Rendering
# =============================================================================


def _preview(content: str, limit: int = 60) -> str:
    preview = content[:limit].replace("\n", " ").strip()
    if len(content) > limit:
        preview += "..."
    return preview


def _message_label(message: Message, is_active: bool, full: bool = False) -> Text:
    role_color = ROLE_COLORS.get(message.role, "white")
    label = Text()
    label.append("● " if is_active else "○ ", style="bold yellow" if is_active else "dim")
    label.append(message.role, style=role_color)
    label.append(f" #{message.branch_index}", style="dim")
    label.append(f" {message.id[:8]} ", style="cyan")
    label.append_text(Text.from_markup(STATUS_STYLES.get(message.status, message.status)))

    if message.status == "error" and message.error:
        label.append(f" {message.error}", style="red")
    elif message.content:
        body = message.content if full else _preview(message.content)
        label.append(f"  {body}")
    return label


def _render_tree(tree: ConversationTree, full: bool = False) -> Tree:
    """Build a Rich tree of every branch in a conversation."""
    title = tree.conversation.title or "Untitled conversation"
    root = Tree(f"[bold]{escape(title)}[/bold] [dim]({len(tree)} messages)[/dim]")
    nodes = tree.nodes

    def add(parent: Tree, message: Message) -> None:
        branch = parent.add(_message_label(message, nodes[message.id].is_active, full))
        for child in tree.children(message.id):
            add(branch, child)

    for message in tree.roots():
        add(root, message)
    return root


def _display_detection(text: str, result: DetectionResult, threshold: float) -> None:
    verdict = (
        "[green]auto-branch[/green]"
        if should_auto_branch(result, threshold)
        else "[yellow]single message[/yellow]"
    )
    console.print(
        Panel(
            f"[bold]Input:[/bold] {escape(_preview(text, 80))}\n"
            f"[bold]Strategy:[/bold] {result.strategy or '-'}\n"
            f"[bold]Confidence:[/bold] {result.confidence:.2f}\n"
            f"[bold]Verdict:[/bold] {verdict}",
            title="Question Detection",
            border_style="blue",
        )
    )

    if result.questions:
        table = Table(title="Detected Questions")
        table.add_column("#", style="dim", width=4, justify="right")
        table.add_column("Question")
        for i, question in enumerate(result.questions, 1):
            table.add_row(str(i), Text(question))
        console.print(table)


def _display_branch_points(tree: ConversationTree) -> None:
    points = tree.branch_points()
    if not points and len(tree.roots()) < 2:
        console.print("[yellow]No branches yet[/yellow]")
        return

    table = Table(title="Branch Points")
    table.add_column("Parent", style="cyan", no_wrap=True)
    table.add_column("#", justify="right")
    table.add_column("Branch", style="cyan", no_wrap=True)
    table.add_column("Preview")

    if len(tree.roots()) > 1:
        for root in tree.roots():
            table.add_row("(root)", str(root.branch_index), root.id[:8], _preview(root.content))
    for point in points:
        for child in tree.children(point.id):
            table.add_row(point.id[:8], str(child.branch_index), child.id[:8], _preview(child.content))

    console.print(table)


def _save(tree: ConversationTree, output: Path) -> Path:
    snapshot = snapshot_tree(tree)
    if output.suffix != ".json":
        output = output / snapshot_filename(snapshot)
    save_snapshot(snapshot, output)
    console.print(f"[green]✓[/green] Conversation saved to: [cyan]{output}[/cyan]")
    return output


# =============================================================================
# Reply Filling
# =============================================================================


def _fill_with_progress(
    engine: BranchingEngine, conversation_id: str, assistant_id: str, label: str
) -> Message:
    """Fill one placeholder, streaming to the console when configured.

    Ctrl-C cancels just this reply; the session keeps running.
    """
    stream = engine.llm_settings.stream
    try:
        if stream:
            console.print(f"[bold green]{label}>[/bold green] ", end="")

            def on_chunk(chunk: StreamChunk) -> None:
                if chunk.content:
                    console.print(chunk.content, end="", markup=False, highlight=False)

            message = engine.stream_reply(
                assistant_id, on_chunk=on_chunk, conversation_id=conversation_id
            )
            console.print()
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TimeElapsedColumn(),
                console=console,
                transient=True,
            ) as progress:
                progress.add_task(f"Waiting for {label}...", total=None)
                message = engine.complete_reply(assistant_id, conversation_id)
    except KeyboardInterrupt:
        engine.abort(assistant_id, conversation_id)
        message = engine.store.get_messages(conversation_id)[assistant_id]
        console.print()

    if message.status == "completed" and not stream:
        console.print(Panel(Text(message.content), title=label, border_style="green"))
    if message.status == "error":
        console.print(f"[red]✗ {label} failed:[/red] {escape(message.error or '')}")
    return message



def _send(engine: BranchingEngine, conversation_id: str, text: str) -> None:
    result = engine.send_message(conversation_id, text, complete=False)
    if result.auto_branched:
        console.print(
            f"[cyan]↳ Split into {len(result.branches)} branches "
            f"(confidence {result.confidence:.2f})[/cyan]"
        )
    for i, assistant_id in enumerate(result.assistant_ids, 1):
        label = f"branch {i}" if result.auto_branched else "assistant"
        _fill_with_progress(engine, result.conversation_id, assistant_id, label)


# =============================================================================
# Commands
# =============================================================================


@app.command(name="detect")
def detect_cmd(
    text: Annotated[str, typer.Argument(help="Message text to classify")],
    threshold: Annotated[float, typer.Option(help="Auto-branch confidence threshold")] = 0.5,
):
    """Show how a message would be split into branches."""
    _display_detection(text, detect(text), threshold)


@app.command()
def ask(
    text: Annotated[str, typer.Argument(help="Message to send")],
    config_path: Annotated[
        Path | None, typer.Option("--config", help="Path to config YAML")
    ] = None,
    provider: Annotated[
        str | None, typer.Option(help="Provider to use (anthropic|openai|ollama)")
    ] = None,
    model: Annotated[str | None, typer.Option(help="Model name")] = None,
    no_stream: Annotated[bool, typer.Option("--no-stream", help="Wait for full replies")] = False,
    output: Annotated[
        Path | None, typer.Option(help="Save the conversation (file or directory)")
    ] = None,
):
    """Send one message in a new conversation and show the resulting tree."""
    config = _apply_overrides(_load_app_config(config_path), provider, model, no_stream)
    store, engine, _ = _build_engine(config)

    try:
        conversation_id = store.create_conversation(title=_preview(text, 40))
        _send(engine, conversation_id, text)
    except BranchChatError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    tree = store.get_conversation(conversation_id)
    console.print()
    console.print(_render_tree(tree))

    if output is not None:
        _save(tree, output)

    failed = [m for m in tree if m.status == "error"]
    if failed:
        raise typer.Exit(1)


@app.command()
def chat(
    config_path: Annotated[
        Path | None, typer.Option("--config", help="Path to config YAML")
    ] = None,
    provider: Annotated[
        str | None, typer.Option(help="Provider to use (anthropic|openai|ollama)")
    ] = None,
    model: Annotated[str | None, typer.Option(help="Model name")] = None,
    resume: Annotated[
        Path | None, typer.Option(help="Continue a saved conversation")
    ] = None,
):
    """Chat interactively; multi-question messages fork into branches."""
    config = _apply_overrides(_load_app_config(config_path), provider, model)
    store, engine, view = _build_engine(config)

    if resume is not None:
        snapshot = load_snapshot(resume)
        if snapshot is None:
            console.print(f"[red]Conversation file not found: {resume}[/red]")
            raise typer.Exit(1)
        conversation_id = store.import_tree(restore_tree(snapshot))
    else:
        conversation_id = store.create_conversation(
            title=f"Chat {datetime.now().strftime('%Y-%m-%d %H:%M')}"
        )

    console.print(
        Panel(
            f"[bold]Provider:[/bold] {config.llm.provider.value}\n"
            f"[bold]Model:[/bold] {config.llm.resolved_model}\n"
            f"[bold]Auto-branch:[/bold] {'on' if config.branching.auto_branch else 'off'}",
            title="branch-chat",
            border_style="blue",
        )
    )
    console.print(CHAT_HELP)

    while True:
        try:
            text = console.input("[bold blue]you>[/bold blue] ").strip()
        except (EOFError, KeyboardInterrupt):
            console.print()
            break

        if not text:
            continue

        tree = store.get_conversation(conversation_id)
        try:
            if text in ("/quit", "/exit"):
                break
            elif text == "/help":
                console.print(CHAT_HELP)
            elif text == "/tree":
                console.print(_render_tree(tree))
                console.print(f"[dim]View mode: {view.mode}[/dim]")
            elif text == "/branches":
                _display_branch_points(tree)
            elif text.startswith("/switch"):
                _switch(store, tree, text.removeprefix("/switch").strip())
            elif text == "/regen":
                _regenerate(engine, tree)
            elif text.startswith("/edit"):
                _edit(engine, tree, text.removeprefix("/edit").strip())
            elif text.startswith("/save"):
                target = text.removeprefix("/save").strip()
                _save(tree, Path(target) if target else Path(config.storage.output_dir))
            elif text.startswith("/"):
                console.print(f"[yellow]Unknown command: {escape(text)}[/yellow]")
                console.print(CHAT_HELP)
            else:
                _send(engine, conversation_id, text)
        except BranchChatError as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")


def _switch(store: ConversationStore, tree: ConversationTree, prefix: str) -> None:
    if not prefix:
        console.print("[yellow]Usage: /switch <id-prefix>[/yellow]")
        return

    matches = [m for m in tree if m.id.startswith(prefix)]
    if len(matches) != 1:
        console.print(f"[yellow]{len(matches)} messages match '{escape(prefix)}'[/yellow]")
        return

    path = store.activate_branch(matches[0].id)
    console.print(f"[green]✓[/green] Active branch now ends at [cyan]{path[-1][:8]}[/cyan]")
    for message in tree.active_messages():
        console.print(f"  [{ROLE_COLORS.get(message.role, 'white')}]{message.role}[/]: "
                      f"{escape(_preview(message.content, 80))}")


def _last_on_path(tree: ConversationTree, role: str) -> Message | None:
    for message in reversed(tree.active_messages()):
        if message.role == role:
            return message
    return None


def _regenerate(engine: BranchingEngine, tree: ConversationTree) -> None:
    reply = _last_on_path(tree, "assistant")
    if reply is None:
        console.print("[yellow]Nothing to regenerate[/yellow]")
        return
    result = engine.regenerate(reply.id, complete=False)
    _fill_with_progress(engine, result.conversation_id, result.assistant_ids[0], "assistant")


def _edit(engine: BranchingEngine, tree: ConversationTree, new_text: str) -> None:
    if not new_text:
        console.print("[yellow]Usage: /edit <new message text>[/yellow]")
        return
    question = _last_on_path(tree, "user")
    if question is None:
        console.print("[yellow]Nothing to edit[/yellow]")
        return
    result = engine.edit_message(question.id, new_text, complete=False)
    _fill_with_progress(engine, result.conversation_id, result.assistant_ids[0], "assistant")


@app.command()
def show(
    path: Annotated[Path, typer.Argument(help="Saved conversation JSON file")],
    full: Annotated[bool, typer.Option(help="Show full content (no truncation)")] = False,
):
    """Render a saved conversation tree."""
    snapshot = load_snapshot(path)
    if snapshot is None:
        console.print(f"[red]Conversation file not found: {path}[/red]")
        raise typer.Exit(1)

    try:
        tree = restore_tree(snapshot)
    except BranchChatError as e:
        console.print(f"[red]Corrupt conversation file: {e}[/red]")
        raise typer.Exit(1)

    console.print(
        Panel(
            f"[bold cyan]{tree.conversation.id}[/bold cyan]\n"
            f"[dim]Title:[/dim] {escape(tree.conversation.title or '-')}\n"
            f"[dim]Messages:[/dim] {len(tree)}\n"
            f"[dim]Branch points:[/dim] {len(tree.branch_points())}\n"
            f"[dim]Leaves:[/dim] {len(tree.leaves())}",
            title="Conversation",
            border_style="blue",
        )
    )
    console.print(_render_tree(tree, full=full))
    console.print("\n[dim]● = on the active path, #n = branch index[/dim]")


@app.command()
def providers(
    config_path: Annotated[
        Path | None, typer.Option("--config", help="Path to config YAML")
    ] = None,
):
    """Check which completion providers are configured."""
    config = _load_app_config(config_path)
    manager = LLMManager(ollama_base_url=config.llm.ollama_base_url)

    table = Table(title="Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Default", justify="center")

    for provider, configured in manager.available_providers():
        status = "[green]✓ configured[/green]" if configured else "[red]✗ missing key[/red]"
        default = "★" if provider == config.llm.provider else ""
        table.add_row(provider.value, status, default)

    console.print(table)


if __name__ == "__main__":
    app()
