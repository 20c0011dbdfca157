"""Device probe tasks and a handle that tracks their progress."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from lblcore.device_manager import DeviceType, DiscoveredDeviceCallback
from lblcore.logger import LevelFilter, get_logger

__all__ = ["ProbeError", "ProbeHandle", "start_probes"]

_TARGET = "lblcore.async_probe"

ProbeTask = Callable[[], None]


class ProbeError(Exception):
    """A probe task failed; ``device_type`` names the class it was detecting."""

    def __init__(self, message: str = "", device_type: DeviceType | None = None) -> None:
        super().__init__(message)
        self.device_type = device_type


class ProbeHandle:
    """Runs pending probe tasks and reports how many have finished."""

    def __init__(self, tasks: Iterable[ProbeTask]) -> None:
        self._pending: list[ProbeTask] = list(tasks)
        self.total_tasks = len(self._pending)
        self.completed_tasks = 0
        self.errors: list[ProbeError] = []

    def poll_progress(self) -> bool:
        """Run every pending task; return True once all tasks are done."""
        if self._pending:
            get_logger().log(LevelFilter.DEBUG, _TARGET, "[HAL_PROBE] Polling progress...")
        while self._pending:
            task = self._pending.pop(0)
            try:
                task()
            except ProbeError as exc:
                self.errors.append(exc)
            self.completed_tasks += 1
        return self.is_complete()

    def progress_percentage(self) -> float:
        """Return completion as a percentage between 0.0 and 100.0."""
        if self.total_tasks == 0:
            return 100.0
        return self.completed_tasks / self.total_tasks * 100.0

    def is_complete(self) -> bool:
        """Return True if every task has finished."""
        return self.completed_tasks == self.total_tasks


def _probe(label: str, callback: DiscoveredDeviceCallback) -> ProbeTask:
    def run() -> None:
        get_logger().log(LevelFilter.INFO, _TARGET, f"[HAL_PROBE] Probing {label}...")

    run.callback = callback  # type: ignore[attr-defined]
    return run


def start_probes(callback: DiscoveredDeviceCallback) -> ProbeHandle:
    """Create the storage, network, GPU and input probes; they report through ``callback``."""
    get_logger().log(LevelFilter.INFO, _TARGET, "[HAL_PROBE] Starting specific device probes...")
    return ProbeHandle(
        _probe(label, callback)
        for label in (
            "storage devices",
            "network devices",
            "GPU",
            "input devices (KB, Mouse)",
        )
    )