"""Docker Compose execution environment.

Wraps the ``docker`` CLI the way an operator would use it by hand:
``docker compose up -d``, ``docker inspect``, ``docker compose logs`` and
``docker compose restart``.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from stackboot.core.exceptions import RuntimeCommandError, RuntimeUnavailable
from stackboot.ports.runtime import (
    CommandResult,
    ExecutionEnvironmentPort,
    RuntimeInspection,
)

if TYPE_CHECKING:
    from stackboot.startup.config_schema import StackConfig
    from stackboot.startup.service_registry import ServiceNode

logger = logging.getLogger(__name__)

INSPECT_FORMAT = (
    "{{.State.Status}}|"
    "{{if .State.Health}}{{.State.Health.Status}}{{else}}none{{end}}"
)
DAEMON_DOWN_MARKERS = ("Cannot connect to the Docker daemon", "error during connect")
NO_SUCH_OBJECT_MARKERS = ("No such object", "No such container")
INSPECT_TIMEOUT = 30.0
PING_TIMEOUT = 15.0


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass


class DockerComposeRuntime(ExecutionEnvironmentPort):
    """Execution environment backed by the docker CLI."""

    def __init__(
        self,
        project_dir: Path | str = ".",
        *,
        compose_files: Sequence[str] = (),
        docker_binary: str = "docker",
        command_timeout: float = 300.0,
        env: dict[str, str] | None = None,
    ) -> None:
        self.project_dir = Path(project_dir)
        self.compose_files = tuple(compose_files)
        self.docker_binary = docker_binary
        self.command_timeout = command_timeout
        self.env = env

    @classmethod
    def from_config(cls, config: StackConfig) -> DockerComposeRuntime:
        return cls(
            config.project_dir,
            compose_files=config.compose_files,
            docker_binary=config.docker_binary,
            command_timeout=config.command_timeout,
        )

    # ------------------------- internal helpers -------------------------

    def _compose(self, *args: str) -> list[str]:
        argv = [self.docker_binary, "compose"]
        for compose_file in self.compose_files:
            argv += ["-f", compose_file]
        return argv + list(args)

    def _process_env(self) -> dict[str, str] | None:
        if self.env is None:
            return None
        return {**os.environ, **self.env}

    async def _spawn(
        self, argv: list[str], *, merge_stderr: bool = False
    ) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT if merge_stderr else asyncio.subprocess.PIPE,
                cwd=self.project_dir,
                env=self._process_env(),
            )
        except FileNotFoundError as e:
            msg = f"'{argv[0]}' executable not found"
            raise RuntimeUnavailable(msg) from e

    async def _run(
        self,
        argv: list[str],
        *,
        subject: str = "docker",
        timeout: float | None = None,
    ) -> CommandResult:
        logger.debug("Running %s", " ".join(argv))
        proc = await self._spawn(argv)
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=timeout or self.command_timeout
            )
        except TimeoutError:
            _kill(proc)
            await proc.wait()
            raise RuntimeCommandError(subject, argv, -1, "command timed out") from None
        except asyncio.CancelledError:
            _kill(proc)
            raise

        result = CommandResult(
            args=tuple(argv),
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode(errors="replace") if stdout else "",
            stderr=stderr.decode(errors="replace") if stderr else "",
        )
        if any(marker in result.stderr for marker in DAEMON_DOWN_MARKERS):
            raise RuntimeUnavailable(result.stderr.strip().splitlines()[-1])
        return result

    # ------------------------- port methods -------------------------

    async def ping(self) -> None:
        result = await self._run(
            [self.docker_binary, "info", "--format", "{{.ServerVersion}}"],
            timeout=PING_TIMEOUT,
        )
        if not result.ok:
            reason = result.stderr.strip() or f"docker info exited {result.returncode}"
            raise RuntimeUnavailable(reason)
        logger.debug("Docker server version %s", result.stdout.strip())

    async def start(self, node: ServiceNode) -> CommandResult:
        argv = self._compose("up", "-d", node.name)
        result = await self._run(argv, subject=node.name)
        if not result.ok:
            raise RuntimeCommandError(node.name, argv, result.returncode, result.stderr)
        return result

    async def inspect(self, node: ServiceNode) -> RuntimeInspection:
        argv = [
            self.docker_binary,
            "inspect",
            "--format",
            INSPECT_FORMAT,
            node.container_name,
        ]
        result = await self._run(argv, subject=node.name, timeout=INSPECT_TIMEOUT)
        if not result.ok:
            if any(marker in result.stderr for marker in NO_SUCH_OBJECT_MARKERS):
                return RuntimeInspection.absent()
            raise RuntimeCommandError(node.name, argv, result.returncode, result.stderr)
        status, _, health = result.stdout.strip().partition("|")
        return RuntimeInspection(status=status or "absent", health=health or "none")

    async def logs(
        self, node: ServiceNode, *, tail: int = 50, follow: bool = False
    ) -> AsyncIterator[str]:
        argv = self._compose("logs", f"--tail={tail}")
        if follow:
            argv.append("-f")
        argv.append(node.name)
        proc = await self._spawn(argv, merge_stderr=True)
        try:
            if proc.stdout is None:
                return
            async for raw in proc.stdout:
                yield raw.decode(errors="replace").rstrip("\n")
            await proc.wait()
        finally:
            _kill(proc)

    async def restart(self, node: ServiceNode) -> CommandResult:
        return await self._run(self._compose("restart", node.name), subject=node.name)

    async def exec(self, node: ServiceNode, command: Sequence[str]) -> CommandResult:
        argv = [self.docker_binary, "exec", node.container_name, *command]
        return await self._run(argv, subject=node.name, timeout=INSPECT_TIMEOUT)
