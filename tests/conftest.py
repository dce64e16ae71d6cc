"""Shared fakes for engine tests (no package managers, no model calls)."""

import os
import stat
import subprocess
import sys
from collections import Counter
from pathlib import Path

import pytest

from codexcli.collaborator import FixProposer
from codexcli.engine import Engine
from codexcli.environment import EnvironmentManager
from codexcli.errors import CollaboratorUnavailable
from codexcli.executor import Executor
from codexcli.tracker import SessionTracker


class FakeSetupRunner:
    """
    Stands in for venv / pip / npm.

    `python -m venv X` creates X/bin/python as a shell wrapper around the
    interpreter running the tests. Installs succeed unless the package is in
    `fail`; a package listed in `provides` gets an importable module written
    next to staged snippets once it has been installed that many times.
    """

    def __init__(self, fail=(), provides=None, create_fails=False):
        self.commands = []
        self.fail = set(fail)
        self.provides = dict(provides or {})
        self.create_fails = create_fails
        self.install_counts = Counter()

    def __call__(self, command, cwd, timeout):
        command = [str(c) for c in command]
        self.commands.append(command)

        if command[1:3] == ["-m", "venv"]:
            if self.create_fails:
                return subprocess.CompletedProcess(command, 1, "", "Error: venv creation failed")
            self._make_venv(Path(command[3]))
        elif "install" in command:
            package = command[-1]
            self.install_counts[package] += 1
            if package in self.fail:
                return subprocess.CompletedProcess(
                    command, 1, "", f"ERROR: No matching distribution found for {package}"
                )
            if package in self.provides and self.install_counts[package] >= self.provides[package]:
                staged = Path(cwd) / "staged"
                staged.mkdir(parents=True, exist_ok=True)
                (staged / f"{package}.py").write_text("VALUE = 42\n")

        return subprocess.CompletedProcess(command, 0, "", "")

    @staticmethod
    def _make_venv(isolation: Path) -> None:
        bin_dir = isolation / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        python = bin_dir / "python"
        python.write_text(f'#!/bin/sh\nexec "{sys.executable}" "$@"\n')
        python.chmod(python.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        (isolation / "pyvenv.cfg").write_text(f"home = {Path(sys.executable).parent}\n")

    @property
    def create_calls(self):
        return [c for c in self.commands if c[1:3] == ["-m", "venv"] or c[:2] == ["npm", "init"]]

    @property
    def installs(self):
        return [c[-1] for c in self.commands if "install" in c]


class FakeProposer(FixProposer):
    """Returns queued fixes in order; unavailable when the queue is empty."""

    def __init__(self, fixes=(), error=None):
        self.fixes = list(fixes)
        self.error = error
        self.calls = []

    def propose_fix(self, original_code, language, error_output):
        self.calls.append((original_code, language, error_output))
        if self.error:
            raise CollaboratorUnavailable(self.error)
        if not self.fixes:
            raise CollaboratorUnavailable("no fix queued")
        return self.fixes.pop(0)


class RepeatingProposer(FixProposer):
    """Always proposes the same code."""

    def __init__(self, code):
        self.code = code
        self.calls = 0

    def propose_fix(self, original_code, language, error_output):
        self.calls += 1
        return self.code


posix_only = pytest.mark.skipif(os.name != "posix", reason="uses POSIX shells and signals")


@pytest.fixture
def setup_runner():
    return FakeSetupRunner()


@pytest.fixture
def env_manager(setup_runner):
    return EnvironmentManager(runner=setup_runner)


@pytest.fixture
def make_engine(env_manager):
    """Factory for an Engine over the fake setup runner."""
    engines = []

    def _make(**kwargs):
        kwargs.setdefault("env_manager", env_manager)
        kwargs.setdefault("executor", Executor())
        kwargs.setdefault("tracker", SessionTracker(stop_grace=2.0))
        kwargs.setdefault("timeout", 20.0)
        engine = Engine(**kwargs)
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.shutdown()
