"""Execution state for the self-healing loop."""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set


class ExecutionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


class HealingStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    EXHAUSTED_RETRIES = "EXHAUSTED_RETRIES"
    NON_RETRYABLE = "NON_RETRYABLE"


class FailureKind(str, Enum):
    SETUP = "SETUP"  # fixable by installing packages
    RUNTIME = "RUNTIME"  # needs a code change
    FATAL = "FATAL"  # toolchain missing, nothing to retry


@dataclass(frozen=True)
class CodeBlock:
    language: str
    source: str
    workdir: Path

    def with_source(self, source: str) -> "CodeBlock":
        return replace(self, source=source)


@dataclass
class ExecutionResult:
    """Outcome of running one code block once."""
    status: ExecutionStatus
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    truncated: bool = False
    command: List[str] = field(default_factory=list)
    launch_error: Optional[str] = None  # set when the process never started

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    @property
    def timed_out(self) -> bool:
        return self.status == ExecutionStatus.TIMED_OUT

    def error_output(self) -> str:
        """Text handed to the collaborator: stderr, or stdout when stderr is empty."""
        text = self.stderr.strip() or self.stdout.strip()
        if self.timed_out:
            status_line = "Process timed out and was killed."
        elif self.exit_code is None:
            status_line = "Process could not be started."
        else:
            status_line = f"Process exited with status {self.exit_code}."
        return f"{text}\n\n{status_line}" if text else status_line

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_seconds": self.duration_seconds,
            "truncated": self.truncated,
            "command": self.command,
            "launch_error": self.launch_error,
        }


@dataclass
class FailureDiagnosis:
    kind: FailureKind
    packages: Set[str] = field(default_factory=set)
    reason: str = ""


@dataclass
class RetryAttempt:
    index: int
    block: CodeBlock
    result: Optional[ExecutionResult] = None
    diagnosis: Optional[FailureDiagnosis] = None
    action: Optional[str] = None  # "install" | "fix" | None
    installed: List[str] = field(default_factory=list)
    revised_block: Optional[CodeBlock] = None
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "source": self.block.source,
            "result": self.result.to_dict() if self.result else None,
            "diagnosis": self.diagnosis.kind.value if self.diagnosis else None,
            "diagnosis_reason": self.diagnosis.reason if self.diagnosis else None,
            "action": self.action,
            "installed": list(self.installed),
            "revised_source": self.revised_block.source if self.revised_block else None,
            "note": self.note,
        }


@dataclass
class HealingSession:
    """
    Bounded retry sequence for one code block.

    Never holds more than max_attempts attempts. Returned to the caller as the
    execution outcome; not persisted.
    """
    block: CodeBlock
    max_attempts: int = 3
    status: HealingStatus = HealingStatus.PENDING
    attempts: List[RetryAttempt] = field(default_factory=list)
    current_block: Optional[CodeBlock] = None
    healed_packages: Set[str] = field(default_factory=set)
    setup_notes: List[str] = field(default_factory=list)
    stop_reason: Optional[str] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.current_block is None:
            self.current_block = self.block

    @property
    def last_attempt(self) -> Optional[RetryAttempt]:
        return self.attempts[-1] if self.attempts else None

    @property
    def final_result(self) -> Optional[ExecutionResult]:
        """Result of the last real execution."""
        for attempt in reversed(self.attempts):
            if attempt.result is not None:
                return attempt.result
        return None

    @property
    def succeeded(self) -> bool:
        return self.status == HealingStatus.SUCCEEDED

    @property
    def recovery_attempted(self) -> bool:
        return any(a.action is not None for a in self.attempts)

    @property
    def attempts_remaining(self) -> int:
        return self.max_attempts - len(self.attempts)

    def describe(self) -> str:
        """User-facing summary of how the session ended."""
        result = self.final_result
        if self.succeeded:
            n = len(self.attempts)
            return f"Succeeded on attempt {n} of {self.max_attempts}."
        if result is None:
            return f"No attempt was executed ({self.stop_reason or self.status.value})."

        lines = [f"Attempt {len(self.attempts)} of {self.max_attempts} failed"]
        if result.timed_out:
            lines[0] += " (timed out)."
        elif result.exit_code is not None:
            lines[0] += f" with exit status {result.exit_code}."
        else:
            lines[0] += "."
        if self.status == HealingStatus.EXHAUSTED_RETRIES:
            lines.append("Retry budget exhausted.")
        elif self.stop_reason:
            lines.append(f"Stopped: {self.stop_reason}")
        lines.append(
            "Automatic recovery was attempted."
            if self.recovery_attempted
            else "No automatic recovery was attempted."
        )
        stderr = (result.launch_error or result.stderr).strip()
        if stderr:
            lines.append("")
            lines.append(stderr)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        final = self.final_result
        return {
            "language": self.block.language,
            "workdir": str(self.block.workdir),
            "status": self.status.value,
            "max_attempts": self.max_attempts,
            "stop_reason": self.stop_reason,
            "setup_notes": list(self.setup_notes),
            "final_result": final.to_dict() if final else None,
            "attempts": [a.to_dict() for a in self.attempts],
        }
