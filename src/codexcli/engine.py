"""Engine facade - the interface the chat loop and CLI call.

Components are passed in (or built with defaults) at construction; the
engine holds no module-level mutable state.
"""

import logging
import re
import shlex
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from codexcli.classifier import FailureClassifier, default_classifier
from codexcli.collaborator import FixProposer
from codexcli.constants import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_SERVER_GRACE_S,
    DEFAULT_TIMEOUT_S,
    ENGINE_DIRNAME,
)
from codexcli.deps import extract
from codexcli.environment import EnvironmentManager
from codexcli.execution_loop import HealingContext, run_execution_loop
from codexcli.execution_state import CodeBlock, HealingSession
from codexcli.executor import Executor
from codexcli.registry import resolve
from codexcli.tracker import ProcessSummary, SessionTracker, TerminationOutcome

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _log_name(label: str) -> str:
    slug = re.sub(r"[^\w.-]+", "-", label).strip("-") or "server"
    return f"{slug}-{datetime.now():%Y%m%d_%H%M%S}.log"


class Engine:
    """Runs code blocks with self-healing retries and tracks servers."""

    def __init__(
        self,
        env_manager: Optional[EnvironmentManager] = None,
        executor: Optional[Executor] = None,
        tracker: Optional[SessionTracker] = None,
        proposer: Optional[FixProposer] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        timeout: float = DEFAULT_TIMEOUT_S,
        server_grace: float = DEFAULT_SERVER_GRACE_S,
        classifier: FailureClassifier = default_classifier,
        use_graph: bool = False,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.env_manager = env_manager or EnvironmentManager()
        self.executor = executor or Executor()
        self.tracker = tracker or SessionTracker()
        self.proposer = proposer
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.server_grace = server_grace
        self.classifier = classifier
        self.use_graph = use_graph

    def execute(
        self,
        language_tag: str,
        code_text: str,
        workdir: PathLike,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> HealingSession:
        """
        Run a code block, healing failures up to the attempt budget.

        Returns:
            The finished HealingSession: final status, last result, full history

        Raises:
            UnsupportedLanguage: Unknown language tag (terminal)
            EnvironmentCreationFailed: Isolation root could not be set up (terminal)
        """
        spec = resolve(language_tag)
        workdir = Path(workdir).resolve()
        workdir.mkdir(parents=True, exist_ok=True)

        environment = self.env_manager.acquire(workdir, spec)
        session = HealingSession(
            block=CodeBlock(language=spec.tag, source=code_text, workdir=workdir),
            max_attempts=max_attempts or self.max_attempts,
        )
        ctx = HealingContext(
            env_manager=self.env_manager,
            executor=self.executor,
            environment=environment,
            proposer=self.proposer,
            timeout=timeout or self.timeout,
            classifier=self.classifier,
        )

        if self.use_graph:
            from codexcli.execution_graph import run_execution_graph
            session = run_execution_graph(session, ctx)
        else:
            session = run_execution_loop(session, ctx)

        logger.info("Session for %s ended %s after %d attempt(s)", spec.tag, session.status.value, len(session.attempts))
        return session

    def start_server(
        self,
        target: str,
        label: str,
        workdir: PathLike,
        code: Optional[str] = None,
    ) -> str:
        """
        Start a long-lived process and track it.

        Args:
            target: Language tag when `code` is given, otherwise a command line
            label: User-facing name (port number, project name)
            workdir: Working directory for the process
            code: Optional code block to run as the server

        Returns:
            Tracker handle

        Raises:
            UnsupportedLanguage, EnvironmentCreationFailed, DependencyInstallFailed
            ExecutionFailed: The process exited during its startup grace period
        """
        workdir = Path(workdir).resolve()
        workdir.mkdir(parents=True, exist_ok=True)
        log_path = workdir / ENGINE_DIRNAME / "servers" / _log_name(label)

        if code is not None:
            spec = resolve(target)
            environment = self.env_manager.acquire(workdir, spec)
            self.env_manager.ensure_installed(environment, extract(spec, code, workdir))
            block = CodeBlock(language=spec.tag, source=code, workdir=workdir)
            process, command = self.executor.start_block(
                environment, block, log_path, self.server_grace, self.timeout
            )
        else:
            command = shlex.split(target)
            if not command:
                raise ValueError("Empty server command")
            process = self.executor.start(command, workdir, log_path, self.server_grace)

        return self.tracker.register(process, label, command=command, log_path=log_path)

    def list_sessions(self) -> List[ProcessSummary]:
        return self.tracker.list()

    def stop_session(self, handle: str) -> TerminationOutcome:
        return self.tracker.terminate(handle)

    def shutdown(self) -> Dict[str, TerminationOutcome]:
        """Stop every tracked process."""
        return self.tracker.terminate_all()
