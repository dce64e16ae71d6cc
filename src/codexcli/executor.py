"""Executor - run a staged code block once and report fully.

No retries, no dependency installation. One-shot runs block until the
process exits or the timeout expires; `start` is the non-blocking variant
for servers.
"""

import logging
import os
import signal
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, IO, List, Mapping, Optional, Sequence, Tuple

from codexcli.constants import DEFAULT_OUTPUT_CAP, DEFAULT_SERVER_GRACE_S, DEFAULT_TIMEOUT_S
from codexcli.environment import ExecutionEnvironment
from codexcli.errors import ExecutionFailed
from codexcli.execution_state import CodeBlock, ExecutionResult, ExecutionStatus
from codexcli.registry import render

logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"
_CHUNK = 8192
_DRAIN_TIMEOUT_S = 5.0


def truncation_marker(cap: int) -> str:
    return f"\n[output truncated at {cap} bytes]\n"


class _StreamReader(threading.Thread):
    """Drains a pipe, keeping at most `cap` bytes and discarding the rest."""

    def __init__(self, stream: IO[bytes], cap: int):
        super().__init__(daemon=True)
        self._stream = stream
        self._cap = cap
        self.buffer = bytearray()
        self.clipped = False

    def run(self):
        try:
            while True:
                chunk = self._stream.read1(_CHUNK)
                if not chunk:
                    break
                remaining = self._cap - len(self.buffer)
                if len(chunk) > remaining:
                    self.buffer.extend(chunk[:max(remaining, 0)])
                    self.clipped = True
                else:
                    self.buffer.extend(chunk)
        except (OSError, ValueError):
            # Pipe closed underneath us after a kill
            pass
        finally:
            self._stream.close()

    def text(self) -> str:
        out = self.buffer.decode("utf-8", errors="replace")
        if self.clipped:
            out += truncation_marker(self._cap)
        return out


def signal_process(proc: subprocess.Popen, force: bool = True) -> None:
    """Stop a process and, on POSIX, its whole process group when it leads one."""
    if proc.poll() is not None:
        return
    try:
        if _POSIX and os.getpgid(proc.pid) == proc.pid:
            os.killpg(proc.pid, signal.SIGKILL if force else signal.SIGTERM)
        elif force:
            proc.kill()
        else:
            proc.terminate()
    except ProcessLookupError:
        pass


class Executor:
    """Runs code blocks and raw commands as child processes."""

    def __init__(self, output_cap: int = DEFAULT_OUTPUT_CAP):
        if output_cap < 1:
            raise ValueError("output_cap must be positive")
        self.output_cap = output_cap

    # --- staging ---

    def stage(self, env: ExecutionEnvironment, block: CodeBlock) -> Path:
        """Write the block's source into the environment's staging directory."""
        env.staging_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w",
            suffix=env.language.extension,
            prefix="snippet_",
            dir=env.staging_dir,
            delete=False,
            encoding="utf-8",
        ) as f:
            f.write(block.source)
            return Path(f.name)

    def command_for(self, env: ExecutionEnvironment, source: Path) -> Tuple[Optional[List[str]], List[str], Path]:
        """(compile command or None, run command, binary path) for a staged file."""
        spec = env.language
        binary = source.with_suffix(".exe" if os.name == "nt" else "")
        values = env.template_values(source=str(source), binary=str(binary))
        compile_cmd = render(spec.compile_command, values) if spec.compile_command else None
        return compile_cmd, render(spec.run_command, values), binary

    # --- one-shot ---

    def run(
        self,
        env: ExecutionEnvironment,
        block: CodeBlock,
        timeout: float = DEFAULT_TIMEOUT_S,
    ) -> ExecutionResult:
        """
        Stage and run a code block once.

        Exit code 0 is success. Non-zero exits and signals are FAILED; hitting
        the timeout kills the process group and reports TIMED_OUT.
        """
        source = self.stage(env, block)
        compile_cmd, run_cmd, binary = self.command_for(env, source)
        process_env = env.process_env()
        started = time.monotonic()
        try:
            if compile_cmd:
                compiled = self.run_command(compile_cmd, block.workdir, timeout, process_env)
                if not compiled.succeeded:
                    return compiled
                timeout = max(timeout - (time.monotonic() - started), 0.1)
            result = self.run_command(run_cmd, block.workdir, timeout, process_env)
            result.duration_seconds = time.monotonic() - started
            return result
        finally:
            if not env.language.keep_staged:
                for path in (source, binary):
                    if path.exists() and path.is_file():
                        try:
                            path.unlink()
                        except OSError as e:
                            logger.debug("Could not remove staged file %s: %s", path, e)

    def run_command(
        self,
        command: Sequence[str],
        cwd: Path,
        timeout: float = DEFAULT_TIMEOUT_S,
        env: Optional[Mapping[str, str]] = None,
    ) -> ExecutionResult:
        """Run an argv once with capture cap and timeout."""
        command = list(command)
        logger.info("Executing %s (timeout=%ss, cwd=%s)", command[0], timeout, cwd)
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                command,
                cwd=cwd,
                env=dict(env) if env is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=_POSIX,
            )
        except OSError as e:
            message = f"Command not found: {command[0]}" if isinstance(e, FileNotFoundError) else str(e)
            logger.warning("Could not launch %s: %s", command[0], message)
            return ExecutionResult(
                status=ExecutionStatus.FAILED,
                stderr=message,
                duration_seconds=time.monotonic() - started,
                command=command,
                launch_error=message,
            )

        readers = [_StreamReader(proc.stdout, self.output_cap), _StreamReader(proc.stderr, self.output_cap)]
        for reader in readers:
            reader.start()

        timed_out = False
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            signal_process(proc, force=True)
            proc.wait()
            logger.warning("Execution timed out after %ss, killed process group %d", timeout, proc.pid)

        # Detached grandchildren can hold the pipes open; don't wait on them forever
        for reader in readers:
            reader.join(timeout=_DRAIN_TIMEOUT_S)
        stdout, stderr = (reader.text() for reader in readers)

        if timed_out:
            status = ExecutionStatus.TIMED_OUT
            stderr += f"\nExecution timed out after {timeout}s"
        elif proc.returncode == 0:
            status = ExecutionStatus.SUCCESS
        else:
            status = ExecutionStatus.FAILED

        return ExecutionResult(
            status=status,
            exit_code=proc.returncode,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=time.monotonic() - started,
            truncated=any(reader.clipped for reader in readers),
            command=command,
        )

    # --- non-blocking ---

    def start(
        self,
        command: Sequence[str],
        cwd: Path,
        log_path: Path,
        grace_period: float = DEFAULT_SERVER_GRACE_S,
        env: Optional[Dict[str, str]] = None,
    ) -> subprocess.Popen:
        """
        Launch a long-lived process without waiting for it.

        Output goes to log_path. The process counts as healthy if it is still
        running after grace_period seconds.

        Raises:
            ExecutionFailed: If it cannot be launched or exits during the grace period
        """
        command = list(command)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Starting %s (cwd=%s, log=%s)", " ".join(command), cwd, log_path)
        with open(log_path, "ab") as log:
            try:
                proc = subprocess.Popen(
                    command,
                    cwd=cwd,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    start_new_session=_POSIX,
                )
            except OSError as e:
                raise ExecutionFailed(None, f"Could not launch {command[0]}: {e}") from e

        try:
            proc.wait(timeout=grace_period)
        except subprocess.TimeoutExpired:
            return proc

        tail = log_path.read_bytes()[-self.output_cap:].decode("utf-8", errors="replace")
        raise ExecutionFailed(proc.returncode, tail)

    def start_block(
        self,
        env: ExecutionEnvironment,
        block: CodeBlock,
        log_path: Path,
        grace_period: float = DEFAULT_SERVER_GRACE_S,
        compile_timeout: float = DEFAULT_TIMEOUT_S,
    ) -> Tuple[subprocess.Popen, List[str]]:
        """Stage a code block and start it as a long-lived process."""
        source = self.stage(env, block)
        compile_cmd, run_cmd, _ = self.command_for(env, source)
        process_env = env.process_env()
        if compile_cmd:
            compiled = self.run_command(compile_cmd, block.workdir, compile_timeout, process_env)
            if not compiled.succeeded:
                raise ExecutionFailed(compiled.exit_code, compiled.stderr)
        return self.start(run_cmd, block.workdir, log_path, grace_period, process_env), run_cmd
