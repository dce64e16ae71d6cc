"""Interactive chat loop.

Prompts go to the model; fenced code blocks in its reply can be executed
through the engine. Lines naming a workflow (see commands.py) are dispatched
without asking the model.
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import click

from codexcli.blocks import extract_code_blocks
from codexcli.commands import CommandOutcome, dispatch, is_command
from codexcli.engine import Engine
from codexcli.errors import EngineError
from codexcli.model_client import Message, ModelClient, ModelClientError, traced_complete

logger = logging.getLogger(__name__)

CHAT_SYSTEM_PROMPT = """You are a helpful coding assistant in a terminal.
When you show a program, put it in a fenced code block tagged with its
language (python, javascript, typescript, rust, bash, html) so it can be
run directly."""

RULE = "─" * 29

HELP_TEXT = """Type your prompt and hit Enter; Ctrl+C to exit.
For system commands, prefix with ! (e.g. !ls)
  start-server [port]   serve the working directory
  create-react-app      scaffold a React app
  npm start             start the React dev server
  :servers              list running processes
  :stop <handle>        stop a running process
  :quit                 leave"""


class ChatSession:
    """One interactive session against a model and an engine."""

    def __init__(
        self,
        engine: Engine,
        client: ModelClient,
        model: str,
        workdir: Path,
        raw: bool = False,
        trace: bool = False,
        confirm: Callable[[str], bool] = click.confirm,
    ):
        self.engine = engine
        self.client = client
        self.model = model
        self.workdir = Path(workdir).resolve()
        self.raw = raw
        self.trace = trace
        self.confirm = confirm

    # --- output helpers ---

    def _section(self, title: str, body: str, color: str = "green") -> None:
        if self.raw:
            click.echo(body)
            return
        click.echo(f"\n{click.style(title, bold=True, fg=color)}")
        click.echo(click.style(RULE, dim=True))
        click.echo(body.rstrip())
        click.echo(click.style(RULE, dim=True))

    def _error(self, message: str) -> None:
        click.echo(f"{click.style('Error:', bold=True, fg='red')} {click.style(message, fg='red')}", err=True)

    def _show_outcome(self, outcome: CommandOutcome) -> None:
        if outcome.ok:
            self._section(f"{outcome.name}:", outcome.message or "(no output)")
        else:
            self._error(outcome.message)

    # --- input handling ---

    def handle(self, prompt: str) -> bool:
        """Process one line of input. Returns False when the user asked to quit."""
        prompt = prompt.strip()
        if not prompt:
            return True

        if prompt.startswith(":"):
            return self._handle_meta(prompt)

        if is_command(prompt):
            if not self.raw:
                click.echo(f"{click.style('Executing command:', bold=True, fg='yellow')} {prompt.lstrip('!').strip()}")
            self._show_outcome(dispatch(self.engine, prompt, self.workdir))
            return True

        reply = self.ask_model(prompt)
        if reply is None:
            return True

        self._section("AI Response:", reply, color="cyan")
        if self.raw:
            return True

        blocks = extract_code_blocks(reply)
        if blocks and self.confirm(click.style("Found code blocks. Execute them?", bold=True, fg="yellow")):
            self.run_blocks(blocks)
        return True

    def _handle_meta(self, prompt: str) -> bool:
        name, _, arg = prompt.partition(" ")
        if name in (":quit", ":exit", ":q"):
            return False
        if name == ":help":
            click.echo(HELP_TEXT)
        elif name == ":servers":
            self.show_servers()
        elif name == ":stop":
            self.stop_server(arg.strip())
        else:
            self._error(f"Unknown command {name}; try :help")
        return True

    def ask_model(self, prompt: str) -> Optional[str]:
        messages = [
            Message(role="system", content=CHAT_SYSTEM_PROMPT),
            Message(role="user", content=prompt),
        ]
        try:
            if self.trace:
                result = traced_complete(self.client, messages, self.model, phase="chat")
            else:
                result = self.client.complete(messages=messages, model=self.model)
        except ModelClientError as e:
            self._error(str(e))
            click.echo(click.style("Please try again or Ctrl+C to exit", dim=True))
            return None
        return result.content

    def run_blocks(self, blocks: List[Tuple[str, str]]) -> None:
        for lang, code in blocks:
            if is_command(code):
                self._show_outcome(dispatch(self.engine, code, self.workdir))
                continue

            click.echo(
                f"\n{click.style('Executing', bold=True, fg='green')} "
                f"{click.style(lang or '(untagged)', bold=True, fg='cyan')} "
                f"{click.style('code block:', bold=True, fg='green')}"
            )
            try:
                session = self.engine.execute(lang, code, self.workdir)
            except EngineError as e:
                self._error(str(e))
                continue

            result = session.final_result
            if session.succeeded:
                if result is not None and result.stdout.strip():
                    self._section("Execution result:", result.stdout)
                if len(session.attempts) > 1:
                    click.echo(click.style(session.describe(), fg="green"))
            else:
                self._error(session.describe())

    def show_servers(self) -> None:
        sessions = self.engine.list_sessions()
        if not sessions:
            click.echo("No tracked processes.")
            return
        for s in sessions:
            state = s.state.value if s.exit_code is None else f"{s.state.value} ({s.exit_code})"
            click.echo(f"  {s.handle:<8} {s.label:<16} pid={s.pid:<7} {state:<14} {s.command}")

    def stop_server(self, handle: str) -> None:
        if not handle:
            self._error("Usage: :stop <handle>")
            return
        try:
            outcome = self.engine.stop_session(handle)
        except EngineError as e:
            self._error(str(e))
            return
        click.echo(f"{handle}: {outcome.value}")


def run_chat(session: ChatSession, read_line: Optional[Callable[[], str]] = None) -> None:
    """
    Read-eval loop until :quit, EOF or Ctrl+C. Tracked processes are stopped
    on the way out.
    """
    if read_line is None:
        def read_line():
            return click.prompt(click.style(">", bold=True, fg="cyan"), prompt_suffix=" ", default="", show_default=False)

    if not session.raw:
        click.echo(click.style("CodexCLI", bold=True, fg="cyan"))
        click.echo(click.style(HELP_TEXT, dim=True))
        click.echo(click.style(RULE, dim=True))

    try:
        while True:
            try:
                line = read_line()
            except (EOFError, click.Abort):
                break
            if not session.handle(line):
                break
    except KeyboardInterrupt:
        click.echo()
    finally:
        outcomes = session.engine.shutdown()
        logger.debug("Stopped tracked processes on exit: %s", outcomes)
