from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

import psutil


@dataclass(frozen=True, slots=True)
class MemoryUsage:
    rss: int
    vms: int


@dataclass(frozen=True, slots=True)
class DiskUsage:
    path: str
    total: int = 0
    used: int = 0
    free: int = 0
    error: str | None = None


class SystemInfo(Protocol):
    def uptime_s(self) -> float: ...

    def memory_usage(self) -> MemoryUsage: ...

    def disk_usage(self, mount_points: Iterable[str]) -> list[DiskUsage]: ...


class PsutilSystemInfo:
    def __init__(self, launched_at: float | None = None) -> None:
        self._launched_at = time.monotonic() if launched_at is None else launched_at

    def uptime_s(self) -> float:
        return time.monotonic() - self._launched_at

    def memory_usage(self) -> MemoryUsage:
        info = psutil.Process().memory_info()
        return MemoryUsage(rss=info.rss, vms=info.vms)

    def disk_usage(self, mount_points: Iterable[str]) -> list[DiskUsage]:
        # the root filesystem always comes first
        usages = []
        for path in ("/", *mount_points):
            try:
                usage = psutil.disk_usage(path)
            except OSError as e:
                usages.append(DiskUsage(path=path, error=str(e)))
                continue
            usages.append(
                DiskUsage(
                    path=path,
                    total=usage.total,
                    used=usage.total - usage.free,
                    free=usage.free,
                )
            )
        return usages
