from __future__ import annotations

import subprocess
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

import anyio

from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 60.0

# (argv) -> (returncode, combined stdout/stderr)
CommandRunner = Callable[[Sequence[str]], Awaitable[tuple[int, str]]]


@dataclass(frozen=True, slots=True)
class ServiceResult:
    ok: bool
    output: str = ""
    error: str | None = None


class ServiceController(Protocol):
    async def status(self, services: Sequence[str]) -> dict[str, str]: ...

    async def start(self, service: str) -> ServiceResult: ...

    async def stop(self, service: str) -> ServiceResult: ...


async def run_command(argv: Sequence[str]) -> tuple[int, str]:
    result = await anyio.run_process(
        list(argv),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        check=False,
    )
    output = result.stdout.decode("utf-8", errors="replace").rstrip("\n")
    return result.returncode, output


class Systemctl:
    """Runs `sudo systemctl ...`; every failure comes back as a result."""

    def __init__(
        self,
        *,
        runner: CommandRunner = run_command,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        sudo: bool = True,
    ) -> None:
        self._runner = runner
        self._timeout_s = timeout_s
        self._prefix = ["sudo", "systemctl"] if sudo else ["systemctl"]

    async def _run(self, *args: str) -> ServiceResult:
        argv = [*self._prefix, *args]
        try:
            with anyio.fail_after(self._timeout_s):
                returncode, output = await self._runner(argv)
        except TimeoutError:
            logger.warning("systemctl.timeout", argv=argv, timeout_s=self._timeout_s)
            return ServiceResult(ok=False, error=f"timed out after {self._timeout_s}s")
        except OSError as e:
            logger.warning("systemctl.spawn_failed", argv=argv, error=str(e))
            return ServiceResult(ok=False, error=str(e))
        if returncode != 0:
            logger.info(
                "systemctl.failed", argv=argv, returncode=returncode, output=output
            )
            return ServiceResult(
                ok=False, output=output, error=f"exit status {returncode}"
            )
        return ServiceResult(ok=True, output=output)

    async def status(self, services: Sequence[str]) -> dict[str, str]:
        if not services:
            return {}
        # is-active exits non-zero when any unit is inactive; the lines still
        # come back in argument order
        result = await self._run("is-active", *services)
        lines = result.output.split("\n") if result.output else []
        statuses = {}
        for index, service in enumerate(services):
            if index < len(lines) and lines[index]:
                statuses[service] = lines[index]
            else:
                statuses[service] = result.error or "unknown"
        return statuses

    async def start(self, service: str) -> ServiceResult:
        return await self._run("start", service)

    async def stop(self, service: str) -> ServiceResult:
        return await self._run("stop", service)
