"""CLI entrypoint for codexcli."""

import logging
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv

from codexcli.config import Config, ConfigError, configure_logging, load_config
from codexcli.errors import EngineError

# Load .env file on CLI startup
load_dotenv()

logger = logging.getLogger(__name__)


def build_engine(config: Config, trace: bool = False, with_collaborator: bool = True):
    """Wire an Engine from configuration."""
    from codexcli.collaborator import ModelFixProposer
    from codexcli.engine import Engine
    from codexcli.executor import Executor
    from codexcli.model_client import ModelClientError, get_model_client

    proposer = None
    if with_collaborator:
        try:
            client = get_model_client(config.provider, api_key=config.openrouter_api_key, host=config.ollama_host)
            proposer = ModelFixProposer(client, config.model, trace=trace or config.trace)
        except ModelClientError as e:
            logger.warning("AI fixes disabled: %s", e)

    return Engine(
        executor=Executor(output_cap=config.output_cap),
        proposer=proposer,
        max_attempts=config.max_attempts,
        timeout=config.timeout,
        server_grace=config.server_grace,
        use_graph=trace,
    )


def _load(verbose: bool) -> Config:
    try:
        config = load_config(require_credentials=False)
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)
    configure_logging(verbose or config.debug)
    return config


def _show_session(session) -> None:
    result = session.final_result
    if result is not None and result.stdout:
        click.echo(result.stdout.rstrip())
    if session.succeeded:
        if len(session.attempts) > 1:
            click.echo(click.style(session.describe(), fg="green"), err=True)
    else:
        click.echo(click.style(session.describe(), fg="red"), err=True)


@click.group()
@click.version_option(package_name="codexcli")
def cli():
    """CodexCLI - run code in isolated per-language environments, fixing failures with AI help."""
    pass


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--lang", "language", default=None, help="Language tag (default: from the file extension).")
@click.option(
    "--workdir",
    type=click.Path(file_okay=False),
    default=None,
    help="Working directory (default: the file's directory).",
)
@click.option("--max-attempts", type=click.IntRange(min=1), default=None, help="Attempt budget per run.")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None, help="Per-attempt timeout in seconds.")
@click.option("--no-fix", is_flag=True, help="Do not ask the AI collaborator for fixes.")
@click.option("--trace", is_flag=True, help="Run through the LangGraph wrapper (LangSmith tracing).")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
def run(
    file: str,
    language: Optional[str],
    workdir: Optional[str],
    max_attempts: Optional[int],
    timeout: Optional[float],
    no_fix: bool,
    trace: bool,
    verbose: bool,
):
    """Run a source FILE, retrying with dependency installs and AI fixes."""
    config = _load(verbose)
    source = Path(file).resolve()
    language = language or source.suffix.lstrip(".")
    work_path = Path(workdir).resolve() if workdir else source.parent

    engine = build_engine(config, trace=trace, with_collaborator=not no_fix)
    try:
        session = engine.execute(language, source.read_text(), work_path, max_attempts=max_attempts, timeout=timeout)
    except EngineError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    _show_session(session)
    raise SystemExit(0 if session.succeeded else 1)


# Step runner
@cli.command("exec")
@click.argument("step_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--report-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for the JSON execution report (default: no report).",
)
@click.option("--trace", is_flag=True, help="Run through the LangGraph wrapper (LangSmith tracing).")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
def exec_step(step_file: str, report_dir: Optional[str], trace: bool, verbose: bool):
    """Execute a single step definition file.

    STEP_FILE: Path to step definition (YAML or JSON)

    Step definition format:

    \b
        task_id: my-task-001
        language: python
        code: print("hi")        # or file: path/to/script.py
        max_attempts: 3          # optional
        timeout: 30              # optional
    """
    from codexcli.step_runner import StepDefinitionError, run_step

    config = _load(verbose)
    step_path = Path(step_file).resolve()
    out_path = Path(report_dir).resolve() if report_dir else None

    click.echo(f"Executing step: {step_path}")
    if trace:
        click.echo("  (LangGraph tracing enabled)")
    click.echo()

    engine = build_engine(config, trace=trace)
    try:
        session, report_path = run_step(engine, step_path, out_path)
    except (StepDefinitionError, EngineError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    _show_session(session)
    click.echo("Execution complete.")
    click.echo(f"  Status: {session.status.value}")
    click.echo(f"  Attempts: {len(session.attempts)}/{session.max_attempts}")
    if report_path:
        click.echo(f"  Report: {report_path}")

    raise SystemExit(0 if session.succeeded else 1)


@cli.command()
@click.option("--raw", is_flag=True, help="Print model replies only; no banners, no execution prompts.")
@click.option(
    "--workdir",
    type=click.Path(file_okay=False),
    default=".",
    help="Working directory for executed code and servers.",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
def chat(raw: bool, workdir: str, verbose: bool):
    """Interactive chat; fenced code in replies can be executed."""
    from codexcli.chat import ChatSession, run_chat
    from codexcli.model_client import ModelClientError, get_model_client

    config = _load(verbose)
    try:
        client = get_model_client(config.provider, api_key=config.openrouter_api_key, host=config.ollama_host)
    except ModelClientError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    engine = build_engine(config)
    session = ChatSession(engine, client, config.model, Path(workdir), raw=raw, trace=config.trace)
    run_chat(session)


@cli.command()
def languages():
    """List supported languages and their aliases."""
    from codexcli.registry import LANGUAGES

    for spec in LANGUAGES:
        aliases = ", ".join(spec.aliases) if spec.aliases else "-"
        installer = "packages" if spec.installs_packages else "no installer"
        click.echo(f"  {spec.tag:<12} {spec.extension:<6} aliases: {aliases:<22} {installer}")


@cli.command()
def check_config():
    """Check that the model provider is configured."""
    try:
        config = load_config(require_credentials=True)
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)

    click.echo("Configuration loaded successfully!")
    click.echo(f"  Provider: {config.provider}")
    click.echo(f"  Model: {config.model}")
    if config.provider == "openrouter":
        click.echo("  OPENROUTER_API_KEY: [set]")
    else:
        click.echo(f"  Ollama host: {config.ollama_host}")
    click.echo(f"  Max attempts: {config.max_attempts}")
    click.echo(f"  Timeout: {config.timeout}s")


if __name__ == "__main__":
    cli()
