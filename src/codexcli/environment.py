"""Environment manager - one isolation root per (workdir, language).

The manager owns every ExecutionEnvironment it hands out; nothing else
mutates them. A table lock guards the cache, and a per-key lock serialises
creation and installation so concurrent requests for the same key wait for
the first writer and then reuse its environment.
"""

import logging
import os
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from codexcli.constants import DEFAULT_SETUP_TIMEOUT_S, ENGINE_DIRNAME
from codexcli.deps import pending
from codexcli.errors import DependencyInstallFailed, EnvironmentCreationFailed
from codexcli.registry import LanguageSpec, render, resolve

logger = logging.getLogger(__name__)

# (command, cwd, timeout) -> CompletedProcess
SetupRunner = Callable[[Sequence[str], Path, float], subprocess.CompletedProcess]

EnvironmentKey = Tuple[str, str]

# Search-path variables extend the caller's value instead of replacing it
SEARCH_PATH_VARS = frozenset({"PYTHONPATH", "NODE_PATH"})


def run_setup_command(
    command: Sequence[str],
    cwd: Path,
    timeout: float,
) -> subprocess.CompletedProcess:
    """Run an environment creation / install command, capturing its output."""
    return subprocess.run(
        list(command),
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=timeout,
        stdin=subprocess.DEVNULL,
    )


@dataclass
class ExecutionEnvironment:
    """On-disk execution environment for one (workdir, language) pair."""
    workdir: Path
    language: LanguageSpec
    root: Path
    isolation_path: Optional[Path] = None
    installed: Set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=datetime.now)
    interpreter: str = sys.executable

    @property
    def key(self) -> EnvironmentKey:
        return (str(self.workdir), self.language.tag)

    @property
    def staging_dir(self) -> Path:
        return self.root / "staged"

    def template_values(self, **extra: str) -> Dict[str, str]:
        """Placeholder values for this environment's command templates."""
        values = {
            "env": str(self.root),
            "isolation": str(self.isolation_path or self.root),
            "interpreter": self.interpreter,
            "workdir": str(self.workdir),
        }
        for name, template in self.language.bindings.items():
            values[name] = template.format(**values)
        values.update(extra)
        return values

    def process_env(self) -> Dict[str, str]:
        """Environment variables for processes run in this environment."""
        env = dict(os.environ)
        values = self.template_values()
        for name, template in self.language.env_vars.items():
            value = template.format(**values)
            if name in SEARCH_PATH_VARS and env.get(name):
                value = os.pathsep.join([value, env[name]])
            env[name] = value
        return env


class EnvironmentManager:
    """Creates, caches and installs into execution environments."""

    def __init__(
        self,
        runner: Optional[SetupRunner] = None,
        setup_timeout: float = DEFAULT_SETUP_TIMEOUT_S,
        interpreter: Optional[str] = None,
    ):
        self._runner = runner or run_setup_command
        self._setup_timeout = setup_timeout
        self._interpreter = interpreter or sys.executable
        self._lock = threading.Lock()
        self._environments: Dict[EnvironmentKey, ExecutionEnvironment] = {}
        self._key_locks: Dict[EnvironmentKey, threading.Lock] = {}

    def _key_lock(self, key: EnvironmentKey) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def get(self, workdir: Union[str, Path], language: Union[str, LanguageSpec]) -> Optional[ExecutionEnvironment]:
        """Cached environment for a key, without creating it."""
        spec = resolve(language) if isinstance(language, str) else language
        key = (str(Path(workdir).resolve()), spec.tag)
        with self._lock:
            return self._environments.get(key)

    def acquire(
        self,
        workdir: Union[str, Path],
        language: Union[str, LanguageSpec],
    ) -> ExecutionEnvironment:
        """
        Return the environment for (workdir, language), creating it on first use.

        Raises:
            UnsupportedLanguage: If language is an unknown tag
            EnvironmentCreationFailed: If the creation command fails
        """
        spec = resolve(language) if isinstance(language, str) else language
        workdir = Path(workdir).resolve()
        key = (str(workdir), spec.tag)

        with self._lock:
            env = self._environments.get(key)
        if env is not None:
            return env

        with self._key_lock(key):
            with self._lock:
                env = self._environments.get(key)
            if env is not None:
                return env

            env = self._create(workdir, spec)
            with self._lock:
                self._environments[key] = env
            return env

    def _create(self, workdir: Path, spec: LanguageSpec) -> ExecutionEnvironment:
        root = workdir / ENGINE_DIRNAME / spec.tag
        env = ExecutionEnvironment(
            workdir=workdir,
            language=spec,
            root=root,
            isolation_path=root / spec.isolation_dir if spec.isolation_dir else None,
            interpreter=self._interpreter,
        )
        try:
            env.staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise EnvironmentCreationFailed(spec.tag, str(e)) from e

        marker = root / spec.created_marker if spec.created_marker else None
        if spec.create_command and not (marker and marker.exists()):
            command = render(spec.create_command, env.template_values())
            logger.info("Creating %s environment in %s", spec.tag, root)
            ok, output = self._run(command, root)
            if not ok:
                raise EnvironmentCreationFailed(spec.tag, output)
        else:
            logger.debug("Reusing %s environment in %s", spec.tag, root)

        if spec.bootstrap_packages:
            try:
                self._install(env, spec.bootstrap_packages)
            except DependencyInstallFailed as e:
                raise EnvironmentCreationFailed(spec.tag, str(e)) from e

        return env

    def ensure_installed(self, env: ExecutionEnvironment, packages: Iterable[str]) -> List[str]:
        """
        Install packages not already recorded in the environment's cache.

        Returns:
            Packages installed by this call, in install order

        Raises:
            DependencyInstallFailed: On the first package whose install fails.
                That package is not recorded, so a later call retries it.
        """
        packages = sorted(set(packages))
        if not packages:
            return []
        if not env.language.installs_packages:
            logger.debug("%s has no package installer; skipping %s", env.language.tag, packages)
            return []

        with self._key_lock(env.key):
            return self._install(env, packages)

    def _install(self, env: ExecutionEnvironment, packages: Iterable[str]) -> List[str]:
        installed = []
        for package in sorted(pending(env.installed, packages)):
            command = render(env.language.install_command, env.template_values(package=package))
            logger.info("Installing %s package: %s", env.language.tag, package)
            ok, output = self._run(command, env.root)
            if not ok:
                raise DependencyInstallFailed(package, output)
            env.installed.add(package)
            installed.append(package)
        return installed

    def forget(self, env: ExecutionEnvironment, packages: Iterable[str]) -> None:
        """Drop packages from the installed cache so the next install re-runs."""
        with self._key_lock(env.key):
            env.installed.difference_update(packages)

    def _run(self, command: List[str], cwd: Path) -> Tuple[bool, str]:
        try:
            completed = self._runner(command, cwd, self._setup_timeout)
        except FileNotFoundError:
            return False, f"Command not found: {command[0]}"
        except subprocess.TimeoutExpired:
            return False, f"Timed out after {self._setup_timeout}s: {' '.join(command)}"
        except OSError as e:
            return False, str(e)
        output = "\n".join(part for part in (completed.stdout, completed.stderr) if part)
        return completed.returncode == 0, output
