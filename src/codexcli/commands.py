"""Named workflows recognised in chat input and model replies.

    !<command>           run a shell command once
    start-server [port]  serve the workdir with python -m http.server
    create-react-app     scaffold ./react-app with npx
    npm start            start the dev server inside ./react-app
"""

import logging
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from codexcli.constants import DEFAULT_SERVER_PORT, DEFAULT_SETUP_TIMEOUT_S, DEFAULT_TIMEOUT_S
from codexcli.engine import Engine
from codexcli.errors import EngineError
from codexcli.execution_state import ExecutionResult

logger = logging.getLogger(__name__)

REACT_APP_DIR = "react-app"

# Substitutes tried once when a command's program is not installed
COMMAND_FALLBACKS: Dict[str, List[str]] = {
    "python": ["python3"],
    "pip": ["python3", "-m", "pip"],
    "npm": ["npx", "npm"],
}


@dataclass
class CommandOutcome:
    """What a dispatched workflow did."""
    name: str
    ok: bool
    message: str
    result: Optional[ExecutionResult] = None
    handle: Optional[str] = None


def parse_port(text: str) -> int:
    """Port argument of `start-server`; the default when absent or invalid."""
    parts = text.split()
    if len(parts) > 1 and parts[1].isdigit() and 0 < int(parts[1]) < 65536:
        return int(parts[1])
    return DEFAULT_SERVER_PORT


def fallback_command(command: List[str]) -> Optional[List[str]]:
    substitute = COMMAND_FALLBACKS.get(command[0]) if command else None
    if substitute is None:
        return None
    return substitute + command[1:]


def run_shell(engine: Engine, command_line: str, workdir: Path, timeout: float = DEFAULT_TIMEOUT_S) -> CommandOutcome:
    """Run a `!` command; retries once with a substitute program if the first is missing."""
    try:
        command = shlex.split(command_line)
    except ValueError as e:
        return CommandOutcome(name="shell", ok=False, message=f"Could not parse command: {e}")
    if not command:
        return CommandOutcome(name="shell", ok=False, message="Empty command")

    result = engine.executor.run_command(command, workdir, timeout)
    if result.launch_error:
        substitute = fallback_command(command)
        if substitute:
            logger.info("Retrying with %s", " ".join(substitute))
            result = engine.executor.run_command(substitute, workdir, timeout)

    output = result.stdout if result.succeeded else result.error_output()
    return CommandOutcome(name="shell", ok=result.succeeded, message=output, result=result)


def start_http_server(engine: Engine, port: int, workdir: Path) -> CommandOutcome:
    target = f"{shlex.quote(sys.executable)} -m http.server {port}"
    try:
        handle = engine.start_server(target, f"http-{port}", workdir)
    except EngineError as e:
        return CommandOutcome(name="start-server", ok=False, message=str(e))
    return CommandOutcome(
        name="start-server",
        ok=True,
        message=f"Local server started on port {port} ({handle}).",
        handle=handle,
    )


def create_react_app(engine: Engine, workdir: Path, timeout: float = DEFAULT_SETUP_TIMEOUT_S) -> CommandOutcome:
    result = engine.executor.run_command(["npx", "create-react-app", REACT_APP_DIR], workdir, timeout)
    if not result.succeeded:
        return CommandOutcome(
            name="create-react-app",
            ok=False,
            message=f"Failed to create React application:\n{result.error_output()}",
            result=result,
        )
    return CommandOutcome(
        name="create-react-app",
        ok=True,
        message="React application created. Use 'npm start' to run the development server.",
        result=result,
    )


def start_react_server(engine: Engine, workdir: Path) -> CommandOutcome:
    app_dir = workdir / REACT_APP_DIR
    if not (app_dir / "package.json").exists():
        return CommandOutcome(
            name="npm start",
            ok=False,
            message=f"No React application in {app_dir}. Run 'create-react-app' first.",
        )
    try:
        handle = engine.start_server("npm start", REACT_APP_DIR, app_dir)
    except EngineError as e:
        return CommandOutcome(name="npm start", ok=False, message=str(e))
    return CommandOutcome(
        name="npm start",
        ok=True,
        message=f"React development server started ({handle}).",
        handle=handle,
    )


def is_command(text: str) -> bool:
    stripped = text.strip()
    return (
        stripped.startswith("!")
        or stripped in ("create-react-app", "npm start")
        or stripped.split(" ", 1)[0] == "start-server"
    )


def dispatch(engine: Engine, text: str, workdir: Path) -> Optional[CommandOutcome]:
    """
    Run `text` if it names a workflow.

    Returns:
        The outcome, or None when `text` is not a recognised command
    """
    stripped = text.strip()
    if not is_command(stripped):
        return None

    workdir = Path(workdir).resolve()
    workdir.mkdir(parents=True, exist_ok=True)

    if stripped.startswith("!"):
        return run_shell(engine, stripped[1:].strip(), workdir)
    if stripped == "create-react-app":
        return create_react_app(engine, workdir)
    if stripped == "npm start":
        return start_react_server(engine, workdir)
    return start_http_server(engine, parse_port(stripped), workdir)
