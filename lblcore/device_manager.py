"""Registry of hardware devices discovered during probing."""

from __future__ import annotations

import dataclasses
from collections import defaultdict
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum, auto

from lblcore.logger import LevelFilter, get_logger

__all__ = ["DeviceType", "Device", "DeviceManager", "DiscoveredDeviceCallback"]

_TARGET = "lblcore.device_manager"


class DeviceType(Enum):
    """Broad class of a hardware device."""

    STORAGE = auto()
    NETWORK = auto()
    GPU = auto()
    INPUT_KEYBOARD = auto()
    INPUT_MOUSE = auto()
    INPUT_TOUCH = auto()
    INPUT_GAMEPAD = auto()
    SERIAL_PORT = auto()
    USB_CONTROLLER = auto()
    PCI_BRIDGE = auto()
    OTHER = auto()


@dataclass(frozen=True)
class Device:
    """A discovered device. An ``id`` of 0 asks the manager to assign one."""

    id: int
    name: str
    device_type: DeviceType


DiscoveredDeviceCallback = Callable[[Device], None]


class DeviceManager:
    """Keeps discovered devices by id and by type."""

    def __init__(self) -> None:
        get_logger().log(LevelFilter.INFO, _TARGET, "[DeviceManager] Initializing...")
        self._devices: dict[int, Device] = {}
        self._ids_by_type: defaultdict[DeviceType, list[int]] = defaultdict(list)
        self._next_device_id = 1

    def _generate_id(self) -> int:
        device_id = self._next_device_id
        self._next_device_id += 1
        return device_id

    def add_device(self, device: Device) -> Device:
        """Register ``device`` and return it as stored, with its final id."""
        if device.id < 0:
            raise ValueError(f"device id must not be negative: {device.id}")
        if device.id == 0:
            device = dataclasses.replace(device, id=self._generate_id())
        elif device.id >= self._next_device_id:
            self._next_device_id = device.id + 1

        get_logger().log(
            LevelFilter.INFO,
            _TARGET,
            f"[DeviceManager] Adding device: ID={device.id}, "
            f"Name='{device.name}', Type={device.device_type.name}",
        )
        self._devices[device.id] = device
        self._ids_by_type[device.device_type].append(device.id)
        return device

    def get_device_by_id(self, device_id: int) -> Device | None:
        """Return the device with ``device_id``, or None."""
        return self._devices.get(device_id)

    def get_devices_by_type(self, device_type: DeviceType) -> list[Device]:
        """Return the devices of ``device_type`` in the order they were added."""
        return [
            self._devices[device_id]
            for device_id in self._ids_by_type.get(device_type, ())
            if device_id in self._devices
        ]

    def iter_devices(self) -> Iterator[Device]:
        """Yield every device in ascending id order."""
        for device_id in sorted(self._devices):
            yield self._devices[device_id]

    def add_device_callback(self) -> DiscoveredDeviceCallback:
        """Return a callable that probe tasks use to report devices to this manager."""

        def report(device: Device) -> None:
            get_logger().log(
                LevelFilter.DEBUG,
                _TARGET,
                f"[DeviceManager CB] Device reported: ID={device.id}, "
                f"Name='{device.name}', Type={device.device_type.name}",
            )
            self.add_device(device)

        return report