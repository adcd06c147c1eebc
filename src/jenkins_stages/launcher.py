# launcher.py
# Starting work that outlives the command that asked for it.
#
# The monitor runs in a re-executed copy of this program so that it can keep
# going independently of the command that started it; the thread launcher is
# the in-process alternative with the same handle interface.
from __future__ import annotations

import os
import subprocess
import sys
import threading
from typing import Callable, List, Mapping, Optional, Protocol, Sequence

from .errors import SpawnError
from .ui.console import Console, get_console

CHILD_ENV = "__IS_CHILD"


class Handle(Protocol):
    def wait(self) -> int: ...


class ProcessLauncher(Protocol):
    def spawn(self, args: Sequence[str]) -> Handle: ...


def is_child() -> bool:
    """True inside a process started by SubprocessLauncher."""
    return os.environ.get(CHILD_ENV) == "1"


def self_command() -> List[str]:
    """The argv prefix that re-runs this program."""
    return [sys.executable, "-m", "jenkins_stages"]


class SubprocessLauncher:
    """Re-executes this program with new arguments; the child shares our stdout/stderr."""

    def __init__(
        self,
        command: Optional[Sequence[str]] = None,
        env: Optional[Mapping[str, str]] = None,
        console: Optional[Console] = None,
    ):
        """
        Args:
            command: argv prefix to run (defaults to this interpreter and package)
            env: Extra environment for the child, e.g. connection settings given as flags
            console: Where verbose logging goes
        """
        self.command = list(command) if command else self_command()
        self.env = dict(env or {})
        self.console = console or get_console()

    def spawn(self, args: Sequence[str]) -> subprocess.Popen:
        """
        Start the child process.

        Raises:
            SpawnError: If the process could not be started
        """
        argv = [*self.command, *args]
        env = dict(os.environ)
        env.update(self.env)
        env[CHILD_ENV] = "1"
        self.console.debug(f"spawning command [{argv}]")
        try:
            return subprocess.Popen(argv, env=env)
        except OSError as e:
            raise SpawnError(argv[0], str(e)) from e


class ThreadHandle:
    """Wait handle for a callable running on a background thread."""

    def __init__(self, target: Callable[[], Optional[int]]):
        self._target = target
        self._code = 0
        self._error: Optional[BaseException] = None
        self._thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        try:
            self._code = self._target() or 0
        except BaseException as e:  # re-raised from wait()
            self._error = e

    def start(self) -> "ThreadHandle":
        self._thread.start()
        return self

    def wait(self) -> int:
        self._thread.join()
        if self._error is not None:
            raise self._error
        return self._code


class ThreadLauncher:
    """Runs the work in-process; ``run`` receives the same args a child process would."""

    def __init__(self, run: Callable[[Sequence[str]], Optional[int]]):
        self.run = run

    def spawn(self, args: Sequence[str]) -> ThreadHandle:
        args = list(args)
        return ThreadHandle(lambda: self.run(args)).start()


def monitor_args(pipeline: str, build_ids: Sequence[str], verbosity: int = 0) -> List[str]:
    """Arguments for a background ``monitor`` run."""
    args: List[str] = []
    if verbosity:
        args.append("-" + "v" * verbosity)
    args += ["--pipeline", pipeline, "monitor", "--bg"]
    for build_id in build_ids:
        args += ["-b", str(build_id)]
    return args
