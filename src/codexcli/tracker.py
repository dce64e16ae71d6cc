"""Session tracker for long-lived child processes (dev servers, http.server).

Tracked processes are never awaited by the engine. Liveness is probed only
when `list` is called; there is no background polling.
"""

import itertools
import logging
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from codexcli.constants import DEFAULT_STOP_GRACE_S, MAX_REAPED_PROCESSES
from codexcli.errors import ProcessTerminationFailed
from codexcli.executor import signal_process

logger = logging.getLogger(__name__)


class ProcessState(str, Enum):
    RUNNING = "RUNNING"
    EXITED = "EXITED"
    KILLED = "KILLED"


class TerminationOutcome(str, Enum):
    STOPPED = "STOPPED"  # exited after the graceful signal
    KILLED = "KILLED"  # needed the forced kill
    ALREADY_EXITED = "ALREADY_EXITED"


@dataclass
class TrackedProcess:
    handle: str
    label: str
    command: List[str]
    process: subprocess.Popen
    started_at: datetime = field(default_factory=datetime.now)
    state: ProcessState = ProcessState.RUNNING
    exit_code: Optional[int] = None
    log_path: Optional[Path] = None

    @property
    def pid(self) -> int:
        return self.process.pid

    def probe(self) -> ProcessState:
        """Refresh state from the OS."""
        if self.state == ProcessState.RUNNING:
            code = self.process.poll()
            if code is not None:
                self.state = ProcessState.EXITED
                self.exit_code = code
        return self.state

    def summary(self) -> "ProcessSummary":
        return ProcessSummary(
            handle=self.handle,
            label=self.label,
            command=" ".join(self.command),
            pid=self.pid,
            started_at=self.started_at,
            state=self.state,
            exit_code=self.exit_code,
            log_path=self.log_path,
        )


@dataclass(frozen=True)
class ProcessSummary:
    handle: str
    label: str
    command: str
    pid: int
    started_at: datetime
    state: ProcessState
    exit_code: Optional[int] = None
    log_path: Optional[Path] = None


class SessionTracker:
    """Lock-guarded table of tracked processes."""

    def __init__(self, stop_grace: float = DEFAULT_STOP_GRACE_S, max_reaped: int = MAX_REAPED_PROCESSES):
        self._stop_grace = stop_grace
        self._max_reaped = max_reaped
        self._lock = threading.Lock()
        self._processes: Dict[str, TrackedProcess] = {}
        # Entries that `list` observed as exited; kept so `terminate` can still answer
        self._reaped: Dict[str, TrackedProcess] = {}
        self._counter = itertools.count(1)

    def register(
        self,
        process: subprocess.Popen,
        label: str,
        command: Optional[List[str]] = None,
        log_path: Optional[Path] = None,
    ) -> str:
        """Start tracking a process. Returns its handle."""
        if command is None:
            args = process.args
            command = [str(a) for a in args] if isinstance(args, (list, tuple)) else [str(args)]
        with self._lock:
            handle = f"proc-{next(self._counter)}"
            self._processes[handle] = TrackedProcess(
                handle=handle,
                label=label,
                command=list(command),
                process=process,
                log_path=log_path,
            )
        logger.info("Tracking %s (%s) pid=%d", handle, label, process.pid)
        return handle

    def list(self) -> List[ProcessSummary]:
        """
        Summaries of all tracked processes, with liveness probed now.

        A process that exited on its own is reported once as EXITED and then
        moved out of the live table. Only the newest `max_reaped` of those stay
        reachable by handle.
        """
        with self._lock:
            summaries = []
            for handle, tracked in list(self._processes.items()):
                state = tracked.probe()
                summaries.append(tracked.summary())
                if state != ProcessState.RUNNING:
                    self._reaped[handle] = self._processes.pop(handle)
            while len(self._reaped) > self._max_reaped:
                del self._reaped[next(iter(self._reaped))]
            return summaries

    def get(self, handle: str) -> Optional[ProcessSummary]:
        with self._lock:
            tracked = self._processes.get(handle) or self._reaped.get(handle)
            if tracked is None:
                return None
            tracked.probe()
            return tracked.summary()

    def terminate(self, handle: str) -> TerminationOutcome:
        """
        Stop a tracked process: graceful signal first, forced kill after the grace period.

        Raises:
            ProcessTerminationFailed: Unknown handle, or the process survived the kill
        """
        with self._lock:
            tracked = self._processes.pop(handle, None) or self._reaped.pop(handle, None)
        if tracked is None:
            raise ProcessTerminationFailed(handle, "no such tracked process")

        if tracked.probe() != ProcessState.RUNNING:
            logger.info("%s already exited with status %s", handle, tracked.exit_code)
            return TerminationOutcome.ALREADY_EXITED

        proc = tracked.process
        signal_process(proc, force=False)
        try:
            tracked.exit_code = proc.wait(timeout=self._stop_grace)
            tracked.state = ProcessState.EXITED
            logger.info("%s stopped", handle)
            return TerminationOutcome.STOPPED
        except subprocess.TimeoutExpired:
            logger.warning("%s ignored the stop signal after %ss, killing", handle, self._stop_grace)

        signal_process(proc, force=True)
        try:
            tracked.exit_code = proc.wait(timeout=self._stop_grace)
        except subprocess.TimeoutExpired:
            with self._lock:
                self._processes[handle] = tracked
            raise ProcessTerminationFailed(handle, f"pid {proc.pid} still running after kill")
        tracked.state = ProcessState.KILLED
        return TerminationOutcome.KILLED

    def terminate_all(self) -> Dict[str, TerminationOutcome]:
        """Stop every tracked process. Failures are logged, not raised."""
        with self._lock:
            handles = list(self._processes)
        outcomes = {}
        for handle in handles:
            try:
                outcomes[handle] = self.terminate(handle)
            except ProcessTerminationFailed as e:
                logger.error("%s", e)
        return outcomes
