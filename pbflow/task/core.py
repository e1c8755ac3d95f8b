"""Core base classes shared by pbflow Luigi tasks.

This module provides the shell-executing task base class and the pbflow task
base class, which knows how to report tool versions and how to wrap pbrun
invocations in a container runtime.
"""

import logging
import os
import shlex
import sys
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

import luigi
from shoper.shelloperator import ShellOperator


class ShellTask(luigi.Task, ABC):
    """Abstract base class for Luigi tasks that execute shell commands.

    Commands run through shoper's ShellOperator, which tracks input and output
    files, writes a per-task log, and removes incomplete outputs on failure.
    The operator is configured per task class by ``setup_shell``.

    Attributes:
        retry_count: Number of times to retry the task on failure (default: 0).
    """

    retry_count = 0

    def __init__(self, *args: object, **kwargs: object) -> None:
        super().__init__(*args, **kwargs)
        self.initialize_shell()

    @luigi.Task.event_handler(luigi.Event.PROCESSING_TIME)
    def print_execution_time(self, processing_time: float) -> None:
        logger = logging.getLogger("task-timer")
        message = "{}.{} - total elapsed time:\t{}".format(
            type(self).__module__,
            type(self).__name__,
            timedelta(seconds=processing_time),
        )
        logger.info(message)
        print(message, flush=True)

    @classmethod
    def print_log(cls, message: str, new_line: bool = True) -> None:
        """Print a message with the ``>>`` prefix and log it at INFO level."""
        logging.getLogger(cls.__name__).info(message)
        print(f"{os.linesep if new_line else ''}>>\t{message}", flush=True)

    @classmethod
    def initialize_shell(cls) -> None:
        cls.__sh = None
        cls.__sh_log_path = None
        cls.__sh_run_kwargs = {}

    @classmethod
    def shell_log_path(
        cls, run_id: str | int | None, log_dir_path: str | os.PathLike[str] | None
    ) -> Path | None:
        """Return the shell log path of a run, or None without a log directory."""
        if not (run_id and log_dir_path):
            return None
        name = f"{cls.__module__}.{cls.__name__}.{run_id}.sh.log.txt"
        return Path(log_dir_path).resolve().joinpath(name)

    @classmethod
    def setup_shell(
        cls,
        run_id: str | int | None = None,
        log_dir_path: str | os.PathLike[str] | None = None,
        commands: str | Sequence[str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        remove_if_failed: bool = True,
        clear_log_txt: bool = False,
        print_command: bool = True,
        quiet: bool = True,
        executable: str = "/bin/bash",
        env: Mapping[str, str] | None = None,
        **kwargs: object,
    ) -> None:
        """Configure the shell operator for the task class.

        The versions of ``commands`` are printed into the shell log before any
        other command runs.

        Args:
            run_id: Run identifier used in the shell log name
            log_dir_path: Directory for shell logs (no log file when omitted)
            commands: Executables whose versions are printed
            cwd: Working directory of the shell
            remove_if_failed: Remove outputs of a failed command
            clear_log_txt: Truncate an existing shell log
            print_command: Echo each command before running it
            quiet: Hide STDOUT/STDERR of the commands
            executable: Shell executable
            env: Environment variables overriding the current environment
            **kwargs: Extra keyword arguments for ShellOperator.run
        """
        cls.__sh_log_path = cls.shell_log_path(run_id, log_dir_path)
        cls.__sh = ShellOperator(
            log_txt=(str(cls.__sh_log_path) if cls.__sh_log_path else None),
            quiet=quiet,
            clear_log_txt=clear_log_txt,
            logger=logging.getLogger(cls.__name__),
            print_command=print_command,
            executable=executable,
        )
        cls.__sh_run_kwargs = {
            "cwd": cwd,
            "remove_if_failed": remove_if_failed,
            "env": {**os.environ, **(env or {})},
            **kwargs,
        }
        cls.make_dirs(log_dir_path, cwd)
        if commands:
            cls.run_shell(args=list(cls.generate_version_commands(commands)))

    @classmethod
    def make_dirs(cls, *paths: str | os.PathLike[str] | None) -> None:
        for d in {Path(str(p)).resolve() for p in paths if p}:
            if not d.is_dir():
                cls.print_log(f"Make a directory:\t{d}", new_line=False)
                d.mkdir(parents=True, exist_ok=True)

    @classmethod
    def run_shell(cls, *args: object, **kwargs: object) -> None:
        """Run commands with the configured ShellOperator.

        Keyword arguments given here take precedence over those from
        ``setup_shell``. The elapsed time is appended to the shell log.
        """
        started = datetime.now(UTC)
        cls.__sh.run(*args, **{**cls.__sh_run_kwargs, **kwargs})
        message = f"shell elapsed time:\t{datetime.now(UTC) - started}"
        logging.getLogger(cls.__name__).info(message)
        if cls.__sh_log_path:
            with cls.__sh_log_path.open("a", encoding="utf-8") as f:
                f.write(f"### {message}{os.linesep}")

    @classmethod
    def remove_files_and_dirs(cls, *paths: str | os.PathLike[str]) -> None:
        targets = [Path(str(p)) for p in paths if Path(str(p)).exists()]
        if not targets:
            return
        flag = "-rf" if any(t.is_dir() for t in targets) else "-f"
        cls.run_shell(args=shlex.join(["rm", flag, *map(str, targets)]))

    @classmethod
    def print_env_versions(cls) -> None:
        """Print versions of the Python environment and the host OS."""
        release_files = sorted(
            p
            for p in Path("/etc").glob("*")
            if p.name.endswith(("-release", "_version")) and p.is_file()
        )
        cls.run_shell(
            args=[
                f"{sys.executable} --version",
                f"{sys.executable} -m pip --version",
                f"{sys.executable} -m pip freeze --no-cache-dir",
                "uname -a",
                *[
                    f"cat {p}"
                    for p in [Path("/proc/version"), *release_files]
                    if p.is_file()
                ],
            ]
        )

    @staticmethod
    @abstractmethod
    def generate_version_commands(commands: str | Sequence[str]) -> Iterable[str]:
        """Generate version checking commands for the given executables."""
        raise NotImplementedError


class PbflowTask(ShellTask):
    """Base task class for pbflow operations.

    Extends ShellTask with version commands for the tools pbflow invokes and
    with the container wrapper used to dispatch pbrun.
    """

    @staticmethod
    def generate_version_commands(commands: str | Sequence[str]) -> Iterable[str]:
        """Generate version checking commands for the given executables.

        Args:
            commands: Command name(s) to generate version commands for

        Yields:
            Version checking command strings
        """
        for c in [commands] if isinstance(commands, str) else commands:
            n = Path(c).name
            if n == "bwa":
                yield f'{c} 2>&1 | grep -e "Program:" -e "Version:"'
            elif n == "pbrun":
                yield f"{c} version"
            elif n in {"bgzip", "tabix"}:
                yield f"{c} --version | head -1"
            else:
                yield f"{c} --version"

    @staticmethod
    def generate_container_command(
        args: Sequence[str],
        image: str,
        mount_dir_paths: Iterable[str | os.PathLike[str]],
        cwd: str | os.PathLike[str],
        runtime: str = "docker",
        docker: str = "docker",
        num_gpus: int = 1,
        n_cpu: int | None = None,
        memory_mb: float | None = None,
    ) -> str:
        """Build the shell command that runs a pbrun invocation.

        With the ``docker`` runtime, every mount directory is bound at the same
        path inside the container so that host paths stay valid. With the
        ``none`` runtime, pbrun is expected on the host PATH.

        Args:
            args: pbrun arguments (starting with ``pbrun``)
            image: Container image reference
            mount_dir_paths: Directories to bind into the container
            cwd: Working directory inside the container
            runtime: Container runtime (``docker`` or ``none``)
            docker: Path to the docker executable
            num_gpus: Number of GPUs exposed to the container
            n_cpu: CPU limit for the container
            memory_mb: Memory limit for the container in MB

        Returns:
            Shell command string

        Raises:
            ValueError: If the runtime is not supported
        """
        command = shlex.join(args)
        if runtime == "none":
            return f"set -e && {command}"
        elif runtime != "docker":
            msg = f"unsupported container runtime: {runtime}"
            raise ValueError(msg)
        mount_dirs = sorted({str(Path(str(p)).resolve()) for p in mount_dir_paths})
        return (
            f"set -e && {docker} run --rm"
            f" --gpus {int(num_gpus)}"
            ' --user "$(id -u):$(id -g)"'
            + (f" --cpus {int(n_cpu)}" if n_cpu else "")
            + (f" --memory {int(memory_mb)}m" if memory_mb else "")
            + "".join(f" --volume {d}:{d}" for d in mount_dirs)
            + f" --workdir {Path(str(cwd)).resolve()}"
            + f" {image} {command}"
        )
