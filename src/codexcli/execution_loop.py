"""Self-healing execution loop.

Explicit state machine over a HealingSession:

    RUNNING --execute--> SUCCEEDED                    (exit 0)
    RUNNING --execute--> EXHAUSTED_RETRIES            (failed, attempt budget used)
    RUNNING --classify--> install --> RUNNING         (SETUP: same block again)
    RUNNING --classify--> refactor --> RUNNING        (RUNTIME: collaborator's block)
    RUNNING --classify--> NON_RETRYABLE               (FATAL)
    RUNNING --refactor--> NON_RETRYABLE               (collaborator unavailable)

Every pass through `execution_node` appends exactly one attempt, and the loop
stops once `max_attempts` attempts exist, so a session always halts.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from codexcli.classifier import FailureClassifier, default_classifier
from codexcli.collaborator import FixProposer
from codexcli.constants import DEFAULT_TIMEOUT_S
from codexcli.deps import extract
from codexcli.environment import EnvironmentManager, ExecutionEnvironment
from codexcli.errors import CollaboratorUnavailable, DependencyInstallFailed
from codexcli.execution_state import FailureKind, HealingSession, HealingStatus, RetryAttempt
from codexcli.executor import Executor

logger = logging.getLogger(__name__)

# Routes out of the classify / install steps
ROUTE_INSTALL = "install"
ROUTE_REFACTOR = "refactor"
ROUTE_EXECUTE = "execute"
ROUTE_STOP = "stop"


@dataclass
class HealingContext:
    """Collaborators one healing session runs against."""
    env_manager: EnvironmentManager
    executor: Executor
    environment: ExecutionEnvironment
    proposer: Optional[FixProposer] = None
    timeout: float = DEFAULT_TIMEOUT_S
    classifier: FailureClassifier = default_classifier


def _install_with_retry(ctx: HealingContext, packages) -> List[str]:
    """ensure_installed, retried once on failure before the error escapes."""
    try:
        return ctx.env_manager.ensure_installed(ctx.environment, packages)
    except DependencyInstallFailed as e:
        logger.warning("Install of %s failed, retrying once: %s", e.package, e.output.strip()[:200])
        return ctx.env_manager.ensure_installed(ctx.environment, packages)


def prepare_node(session: HealingSession, ctx: HealingContext) -> HealingSession:
    """
    Pre-install packages the current block imports.

    Best-effort: an install failure is noted and execution goes ahead, so the
    real error reaches the loop.
    """
    spec = ctx.environment.language
    if not spec.installs_packages:
        return session

    block = session.current_block
    packages = extract(spec, block.source, block.workdir)
    if not packages:
        return session

    try:
        installed = _install_with_retry(ctx, packages)
    except DependencyInstallFailed as e:
        logger.warning("Pre-install failed: %s", e)
        session.setup_notes.append(str(e))
        return session

    if installed:
        session.setup_notes.append(f"Installed {', '.join(installed)}")
    return session


def execution_node(session: HealingSession, ctx: HealingContext) -> HealingSession:
    """
    Run the current block once and record the attempt.

    Sets status to SUCCEEDED on exit 0, EXHAUSTED_RETRIES when this failed
    attempt used the last of the budget. Never raises for a failed run.
    """
    attempt = RetryAttempt(index=len(session.attempts), block=session.current_block)
    attempt.result = ctx.executor.run(ctx.environment, attempt.block, ctx.timeout)
    session.attempts.append(attempt)

    logger.info(
        "Attempt %d/%d: %s (exit %s)",
        attempt.index + 1, session.max_attempts, attempt.result.status.value, attempt.result.exit_code,
    )

    if attempt.result.succeeded:
        session.status = HealingStatus.SUCCEEDED
    elif len(session.attempts) >= session.max_attempts:
        session.status = HealingStatus.EXHAUSTED_RETRIES
        session.stop_reason = f"failed {session.max_attempts} attempt(s)"
    return session


def classify_node(session: HealingSession, ctx: HealingContext) -> str:
    """Diagnose the last failed attempt and pick the next step."""
    attempt = session.last_attempt
    diagnosis = ctx.classifier(attempt.block, attempt.result, ctx.environment.language)
    attempt.diagnosis = diagnosis
    logger.info("Attempt %d diagnosed as %s (%s)", attempt.index + 1, diagnosis.kind.value, diagnosis.reason)

    if diagnosis.kind == FailureKind.FATAL:
        session.status = HealingStatus.NON_RETRYABLE
        session.stop_reason = diagnosis.reason
        return ROUTE_STOP

    if diagnosis.kind == FailureKind.SETUP and diagnosis.packages - session.healed_packages:
        return ROUTE_INSTALL

    # A package we already reinstalled is still missing: needs a code change
    return ROUTE_REFACTOR


def install_node(session: HealingSession, ctx: HealingContext) -> str:
    """
    Reinstall the packages the last failure named.

    The cache entries are dropped first since the failure proves them stale.
    Returns ROUTE_EXECUTE on success, ROUTE_REFACTOR if installation failed
    twice (the install diagnostic is then passed to the collaborator).
    """
    attempt = session.last_attempt
    packages = attempt.diagnosis.packages - session.healed_packages
    session.healed_packages |= packages
    attempt.action = "install"

    ctx.env_manager.forget(ctx.environment, packages)
    try:
        attempt.installed = _install_with_retry(ctx, packages)
    except DependencyInstallFailed as e:
        logger.warning("Setup pass failed: %s", e)
        attempt.note = str(e)
        return ROUTE_REFACTOR
    return ROUTE_EXECUTE


def refactor_node(session: HealingSession, ctx: HealingContext) -> HealingSession:
    """
    Ask the collaborator for a revised block.

    On CollaboratorUnavailable the session becomes NON_RETRYABLE; the last real
    execution result stays in the history.
    """
    attempt = session.last_attempt
    attempt.action = "fix"

    if ctx.proposer is None:
        session.status = HealingStatus.NON_RETRYABLE
        session.stop_reason = "no AI collaborator configured"
        return session

    error_output = attempt.result.error_output()
    if attempt.note:
        error_output += f"\n\nDependency installation also failed:\n{attempt.note}"

    try:
        revised = ctx.proposer.propose_fix(attempt.block.source, attempt.block.language, error_output)
    except CollaboratorUnavailable as e:
        logger.warning("Collaborator unavailable: %s", e)
        session.status = HealingStatus.NON_RETRYABLE
        session.stop_reason = f"AI collaborator unavailable: {e}"
        attempt.note = "\n".join(filter(None, [attempt.note, session.stop_reason]))
        return session

    attempt.revised_block = attempt.block.with_source(revised)
    session.current_block = attempt.revised_block
    return session


def run_execution_loop(session: HealingSession, ctx: HealingContext) -> HealingSession:
    """
    Main execution loop.

    Logic:
    1. Set status to RUNNING and pre-install the block's imports
    2. Execute; stop on SUCCEEDED or EXHAUSTED_RETRIES
    3. Classify the failure:
       - SETUP   -> reinstall, execute the same block again
       - RUNTIME -> collaborator fix, pre-install, execute the revised block
       - FATAL   -> NON_RETRYABLE
    """
    session.status = HealingStatus.RUNNING
    prepare_node(session, ctx)

    while session.status == HealingStatus.RUNNING:
        execution_node(session, ctx)
        if session.status != HealingStatus.RUNNING:
            break

        route = classify_node(session, ctx)
        if route == ROUTE_INSTALL:
            route = install_node(session, ctx)
            if route == ROUTE_EXECUTE:
                continue
        if route == ROUTE_REFACTOR:
            refactor_node(session, ctx)
            if session.status == HealingStatus.RUNNING:
                prepare_node(session, ctx)

    return session
