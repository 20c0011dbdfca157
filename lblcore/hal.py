"""Hardware abstraction: the hand-off record from the first stage and HAL services."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import Enum

from lblcore.async_probe import ProbeHandle, start_probes
from lblcore.device_manager import DeviceManager
from lblcore.logger import LevelFilter, get_logger

__all__ = [
    "BootInfo",
    "HalError",
    "HalServices",
    "LBL_BOOT_INFO_MAGIC",
    "initialize",
    "start_async_device_probes",
]

_TARGET = "lblcore.hal"

# The magic reads "LBLBIMGC" when the little-endian record is viewed as bytes.
LBL_BOOT_INFO_MAGIC = int.from_bytes(b"LBLBIMGC", "little")

# C layout: u64, u32, pad, u64, u64, u64, u32, u32, u32, u8, tail padding to 8.
_LAYOUT = struct.Struct("<QI4xQQQIIIB3x")


@dataclass(frozen=True)
class BootInfo:
    """Information handed over by the first stage loader."""

    magic: int
    version: int
    memory_map_addr: int
    memory_map_entries: int
    framebuffer_addr: int
    framebuffer_width: int
    framebuffer_height: int
    framebuffer_pitch: int
    framebuffer_bpp: int

    SIZE = _LAYOUT.size
    MAGIC = LBL_BOOT_INFO_MAGIC

    @classmethod
    def from_bytes(cls, data: bytes) -> BootInfo:
        """Decode the record from the start of ``data``."""
        data = bytes(data)
        if len(data) < _LAYOUT.size:
            raise ValueError(
                f"boot info needs {_LAYOUT.size} bytes, got {len(data)}"
            )
        return cls(*_LAYOUT.unpack_from(data))

    def to_bytes(self) -> bytes:
        """Encode the record in its little-endian C layout."""
        try:
            return _LAYOUT.pack(
                self.magic,
                self.version,
                self.memory_map_addr,
                self.memory_map_entries,
                self.framebuffer_addr,
                self.framebuffer_width,
                self.framebuffer_height,
                self.framebuffer_pitch,
                self.framebuffer_bpp,
            )
        except struct.error as exc:
            raise ValueError(f"boot info field out of range: {exc}") from None


class HalError(Exception):
    """A HAL initialisation or device failure; ``kind`` tells which."""

    class Kind(Enum):
        NULL_BOOT_INFO = "null_boot_info"
        INVALID_BOOT_INFO_MAGIC = "invalid_boot_info_magic"
        MEMORY_MAP_PARSING_FAILED = "memory_map_parsing_failed"
        ACPI_INITIALIZATION_FAILED = "acpi_initialization_failed"
        PCI_INITIALIZATION_FAILED = "pci_initialization_failed"
        DEVICE_NOT_FOUND = "device_not_found"
        DRIVER_ERROR = "driver_error"
        OTHER = "other"

    def __init__(self, kind: HalError.Kind, detail: str = "") -> None:
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail


@dataclass
class HalServices:
    """Access to hardware information and the device registry."""

    boot_info: BootInfo
    device_manager: DeviceManager = field(default_factory=DeviceManager)


def initialize(boot_info_data: bytes | None) -> HalServices:
    """Validate the first-stage record and set up HAL services."""
    if not boot_info_data:
        raise HalError(HalError.Kind.NULL_BOOT_INFO)
    try:
        boot_info = BootInfo.from_bytes(boot_info_data)
    except ValueError as exc:
        raise HalError(HalError.Kind.OTHER, str(exc)) from None
    if boot_info.magic != LBL_BOOT_INFO_MAGIC:
        raise HalError(
            HalError.Kind.INVALID_BOOT_INFO_MAGIC,
            f"got {boot_info.magic:#x}",
        )

    log = get_logger()
    log.log(LevelFilter.INFO, _TARGET, "[HAL] Initializing HAL...")
    log.log(LevelFilter.INFO, _TARGET, f"[HAL] Boot Info: {boot_info}")
    services = HalServices(boot_info=boot_info, device_manager=DeviceManager())
    log.log(LevelFilter.INFO, _TARGET, "[HAL] HAL initialization complete.")
    return services


def start_async_device_probes(hal: HalServices) -> ProbeHandle:
    """Start the device probes; discovered devices go to ``hal.device_manager``."""
    get_logger().log(LevelFilter.INFO, _TARGET, "[HAL] Starting asynchronous device probing...")
    return start_probes(hal.device_manager.add_device_callback())