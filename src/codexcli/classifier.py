"""Failure classification for the healing loop.

Decides whether a failed run is worth an install pass (SETUP), needs a code
change from the collaborator (RUNTIME), or cannot be retried at all (FATAL).
The classifier is a plain callable so callers can swap in their own.
"""

from typing import Callable

from codexcli.deps import missing_packages
from codexcli.execution_state import CodeBlock, ExecutionResult, FailureDiagnosis, FailureKind
from codexcli.registry import LanguageSpec

FailureClassifier = Callable[[CodeBlock, ExecutionResult, LanguageSpec], FailureDiagnosis]


def default_classifier(block: CodeBlock, result: ExecutionResult, spec: LanguageSpec) -> FailureDiagnosis:
    """
    Pattern-match "module not found" diagnostics against the language's missing_module_patterns.

    Only languages with an install command can be SETUP; a timeout is always
    RUNTIME; a process that never launched is FATAL.
    """
    if result.launch_error:
        return FailureDiagnosis(FailureKind.FATAL, reason=result.launch_error)

    if not result.timed_out and spec.installs_packages:
        packages = missing_packages(spec, result.stderr, block.workdir)
        if packages:
            return FailureDiagnosis(
                FailureKind.SETUP,
                packages=packages,
                reason=f"missing packages: {', '.join(sorted(packages))}",
            )

    if result.timed_out:
        return FailureDiagnosis(FailureKind.RUNTIME, reason="timed out")
    return FailureDiagnosis(FailureKind.RUNTIME, reason=f"exit status {result.exit_code}")
