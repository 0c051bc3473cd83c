"""
Alto command line: interactive session (``alto``/``alto run``), one-shot ``ask``,
``models`` and ``config``.
"""

import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from . import __version__
from .agent import Agent, RoundStatus
from .config import CONFIG_DIR, HISTORY_FILE, Config
from .history import ConversationHistory
from .llm import DEFAULT_SYSTEM_PROMPT, EndpointClient
from .logger import get_logger, setup_logger
from .rendering import set_use_unicode
from .tools import ToolRegistry
from .ui import build_banner

console = Console()
_log = get_logger(__name__)


def _load_config(project_dir, model=None, api_key=None, base_url=None,
                 auto_confirm=False, timeout=None, verbose=False) -> Config:
    config = Config.load(project_dir)
    if model:
        config.model = model
    if api_key:
        config.api_key = api_key
    if base_url:
        config.base_url = base_url.rstrip("/")
    if auto_confirm:
        config.auto_confirm = True
    if timeout:
        config.request_timeout = timeout
    if verbose:
        config.verbose = True

    setup_logger(verbose=config.verbose, log_file=config.log_file)
    set_use_unicode(config.use_unicode)

    project_root = Path(config.project_root).resolve()
    if not project_root.is_dir():
        console.print(f"[red]Error: '{escape(project_dir)}' is not a valid directory.[/red]")
        sys.exit(1)
    return config


def _build_client(config: Config) -> EndpointClient:
    return EndpointClient(
        config.base_url,
        config.model,
        api_key=config.resolve_api_key(),
        timeout=config.request_timeout,
        temperature=config.temperature,
    )


def _build_agent(config: Config, client: EndpointClient, *, auto_confirm=None,
                 context_window=None) -> Agent:
    tools = ToolRegistry(project_root=config.project_root, command_timeout=config.command_timeout)
    history = ConversationHistory(config.load_system_prompt(DEFAULT_SYSTEM_PROMPT))
    return Agent(
        client,
        tools,
        history,
        console=console,
        auto_confirm=config.auto_confirm if auto_confirm is None else auto_confirm,
        max_iterations=config.max_iterations,
        reasoning_display=config.reasoning_display,
        stop_on_tool_error=config.stop_on_tool_error,
        show_stats=config.show_stats,
        context_window=context_window,
    )


def _project_option(func):
    return click.option("--project-dir", "-d", default=".", show_default=True,
                        help="Project the tools operate on")(func)


@click.group(invoke_without_command=True)
@click.version_option(__version__, prog_name="alto")
@click.pass_context
def cli(ctx):
    """Alto: AI coding assistant for your terminal."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


def _make_session():
    from prompt_toolkit import PromptSession
    from prompt_toolkit.history import FileHistory
    from prompt_toolkit.key_binding import KeyBindings
    from prompt_toolkit.shortcuts import CompleteStyle

    from .ui import PTK_STYLE, SlashCommandCompleter

    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    bindings = KeyBindings()

    @bindings.add("/")
    def _open_palette(event):
        buf = event.current_buffer
        buf.insert_text("/")
        if buf.text == "/":
            buf.start_completion(select_first=True)

    session = PromptSession(
        history=FileHistory(str(HISTORY_FILE)),
        completer=SlashCommandCompleter(),
        complete_while_typing=True,
        complete_style=CompleteStyle.COLUMN,
        style=PTK_STYLE,
        key_bindings=bindings,
    )
    return session


def _run_round(agent: Agent, prompt_text: str, verbose: bool) -> None:
    try:
        agent.chat(prompt_text)
    except KeyboardInterrupt:
        console.print("\n[yellow]  Interrupted.[/yellow]")
    except Exception as error:
        _log.exception("Round failed")
        console.print(f"\n[red]  Error: {escape(str(error))}[/red]")
        if verbose:
            console.print_exception()
    console.print()


@cli.command()
@click.option("--model", "-m", default=None, help="Model name override")
@click.option("--api-key", "-k", default=None, help="API key override")
@click.option("--base-url", "-b", default=None, help="Endpoint base URL override")
@_project_option
@click.option("--auto-confirm", "-y", is_flag=True, help="Run approval-gated commands without asking")
@click.option("--timeout", type=click.IntRange(10, 3600), default=None, help="Request timeout in seconds")
@click.option("--verbose", "-v", is_flag=True, help="Info-level logging on the terminal")
def run(model, api_key, base_url, project_dir, auto_confirm, timeout, verbose):
    """Start an interactive session."""
    from .command_router import InputAccumulator, handle_command
    from .ui import make_prompt_html, render_startup

    console.print(build_banner(__version__))
    os.environ.setdefault("PROMPT_TOOLKIT_NO_CPR", "1")
    config = _load_config(project_dir, model, api_key, base_url, auto_confirm, timeout, verbose)

    client = _build_client(config)
    context_window = client.context_window()
    render_startup(console, config, context_window)
    agent = _build_agent(config, client, context_window=context_window)

    session = _make_session()
    accumulator = InputAccumulator()
    _log.info("Session started: model=%s endpoint=%s", config.model, config.base_url)

    while True:
        try:
            line = session.prompt(make_prompt_html(accumulator.pending))
        except EOFError:
            console.print("\n[dim]Goodbye![/dim]")
            break
        except KeyboardInterrupt:
            if accumulator.pending:
                accumulator.clear()
                console.print("[dim]  (pending input discarded)[/dim]")
            continue

        action = accumulator.feed(line)
        if action.kind == "submit":
            _run_round(agent, action.text, config.verbose)
        elif action.kind == "directive":
            outcome = handle_command(action.text, console=console, agent=agent, config=config,
                                     client=client, accumulator=accumulator)
            if outcome == "quit":
                break
            if outcome == "send":
                _run_round(agent, accumulator.take(), config.verbose)


@cli.command()
@click.argument("message", nargs=-1, required=True)
@click.option("--model", "-m", default=None, help="Model name override")
@click.option("--base-url", "-b", default=None, help="Endpoint base URL override")
@_project_option
@click.option("--auto-confirm", "-y", is_flag=True, help="Run approval-gated commands without asking")
def ask(message, model, base_url, project_dir, auto_confirm):
    """Send one message, run the round, exit non-zero unless it completed."""
    config = _load_config(project_dir, model=model, base_url=base_url, auto_confirm=auto_confirm)
    client = _build_client(config)
    agent = _build_agent(config, client, context_window=client.context_window())
    result = agent.chat(" ".join(message))
    if result.status is not RoundStatus.COMPLETED:
        sys.exit(1)


@cli.command("models")
@click.option("--base-url", "-b", default=None, help="Endpoint base URL override")
@_project_option
def models_cmd(base_url, project_dir):
    """List the models the endpoint serves."""
    from .command_router import show_model_table

    show_model_table(console, _build_client(_load_config(project_dir, base_url=base_url)))


@cli.command("config")
@_project_option
def config_cmd(project_dir):
    """Show the effective configuration."""
    from .command_router import show_config_panel

    show_config_panel(console, _load_config(project_dir))


if __name__ == "__main__":
    cli()
