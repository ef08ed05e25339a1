"""Synchronous dispatch of package-manager and script processes."""
from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from ..workspace import BuildContext


@dataclass(frozen=True, slots=True)
class ProcessResult:
    command: tuple[str, ...]
    returncode: int
    output: str
    elapsed_seconds: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def first_line(self) -> str:
        return self.output.strip().splitlines()[0].strip() if self.output.strip() else ""


class CommandRunner:
    """Run a command to completion and log each output line so it lands in the captured build log."""

    def __init__(self, context: BuildContext, *, verbose: bool = False) -> None:
        self.context = context
        self.verbose = verbose
        self.logger = logging.getLogger("nodebuild.process")

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        echo: bool | None = None,
    ) -> ProcessResult:
        argv = tuple(str(arg) for arg in command)
        process_env = self.context.process_env()
        if env:
            process_env.update(env)

        self.logger.debug("Running %s", " ".join(argv))
        start = time.perf_counter()
        returncode, output = self._spawn(argv, cwd or self.context.build_dir, process_env)
        elapsed = time.perf_counter() - start

        level = logging.INFO if (self.verbose if echo is None else echo) else logging.DEBUG
        for line in output.splitlines():
            self.logger.log(level, "       %s", line)
        if returncode != 0:
            self.logger.debug("%s exited with %s after %.2fs", argv[0], returncode, elapsed)

        return ProcessResult(command=argv, returncode=returncode, output=output, elapsed_seconds=elapsed)

    def _spawn(self, argv: tuple[str, ...], cwd: Path, env: dict[str, str]) -> tuple[int, str]:
        try:
            completed = subprocess.run(
                list(argv),
                cwd=cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                check=False,
            )
        except FileNotFoundError:
            return 127, f"{argv[0]}: command not found"
        return completed.returncode, completed.stdout or ""
