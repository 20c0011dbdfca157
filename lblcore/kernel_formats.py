"""Kernel and initrd image loading into simulated physical memory.

Kernels are recognised by their header; ELF64 executables (either byte
order) are loaded segment by segment to their virtual addresses, with the
uninitialised tail of each segment zeroed. Initrds are raw blobs placed in
freshly allocated, aligned memory.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum, auto

from lblcore.hal import HalServices
from lblcore.logger import LevelFilter, get_logger

__all__ = [
    "DEFAULT_ALLOC_BASE",
    "KernelInfo",
    "LoadedImageInfo",
    "LoadError",
    "PhysicalMemory",
    "is_elf64",
    "load_kernel",
    "load_initrd",
]

_TARGET = "lblcore.kernel_formats"

DEFAULT_ALLOC_BASE = 0x0200_0000
_U64_MAX = 2**64 - 1

_ELF_MAGIC = b"\x7fELF"
_ELFCLASS64 = 2
_ELFDATA2LSB = 1
_ELFDATA2MSB = 2
_ET_EXEC = 2
_PT_LOAD = 1
_PF_X = 0x1
_PF_W = 0x2
_PF_R = 0x4

_EHDR_SIZE = 64
_PHDR_SIZE = 56
_EHDR_TAIL = "HHIQQQIHHHHHH"
_PHDR = "IIQQQQQQ"


@dataclass(frozen=True)
class KernelInfo:
    """Where a kernel was loaded and where it starts."""

    entry_point: int
    load_address: int
    size: int
    stack_ptr: int | None = None


@dataclass(frozen=True)
class LoadedImageInfo:
    """Where a raw image such as an initrd was loaded."""

    load_address: int
    size: int


class LoadError(Exception):
    """An image could not be loaded; ``kind`` tells why."""

    class Kind(Enum):
        INVALID_FORMAT = auto()
        UNSUPPORTED_FORMAT = auto()
        MEMORY_ALLOCATION_FAILED = auto()
        SEGMENT_LOAD_FAILED = auto()
        IO_ERROR = auto()
        INTERNAL = auto()

    def __init__(self, kind: LoadError.Kind, detail: str = "") -> None:
        super().__init__(f"{kind.name}: {detail}" if detail else kind.name)
        self.kind = kind
        self.detail = detail


def _check_range(address: int, length: int) -> None:
    if address < 0 or length < 0 or address + length > _U64_MAX + 1:
        raise ValueError(
            f"memory range {address:#x}+{length:#x} is outside the 64-bit address space"
        )


class PhysicalMemory:
    """Sparse byte-addressable memory with a bump allocator.

    Memory that was never written reads as zero.
    """

    PAGE_SIZE = 4096

    def __init__(self, next_alloc_addr: int = DEFAULT_ALLOC_BASE) -> None:
        _check_range(next_alloc_addr, 0)
        self.next_alloc_addr = next_alloc_addr
        self._pages: dict[int, bytearray] = {}

    def allocate(self, size: int, alignment: int) -> int | None:
        """Reserve ``size`` bytes aligned to ``alignment``; None if space runs out."""
        if size < 0:
            raise ValueError(f"allocation size must not be negative: {size}")
        if alignment <= 0 or alignment & (alignment - 1):
            raise ValueError(f"alignment must be a power of two: {alignment}")
        address = (self.next_alloc_addr + alignment - 1) & ~(alignment - 1)
        if address + size > _U64_MAX:
            return None
        self.next_alloc_addr = address + size
        get_logger().log(
            LevelFilter.DEBUG,
            _TARGET,
            f"[MemAllocStub] Allocated {size:#x} bytes at {address:#x} (align {alignment})",
        )
        return address

    def write(self, address: int, data: bytes) -> None:
        """Store ``data`` starting at ``address``."""
        view = memoryview(bytes(data))
        _check_range(address, len(view))
        pos = 0
        while pos < len(view):
            page, offset = divmod(address + pos, self.PAGE_SIZE)
            chunk = min(self.PAGE_SIZE - offset, len(view) - pos)
            buf = self._pages.get(page)
            if buf is None:
                buf = self._pages[page] = bytearray(self.PAGE_SIZE)
            buf[offset : offset + chunk] = view[pos : pos + chunk]
            pos += chunk

    def read(self, address: int, length: int) -> bytes:
        """Return ``length`` bytes starting at ``address``."""
        _check_range(address, length)
        out = bytearray()
        pos = 0
        while pos < length:
            page, offset = divmod(address + pos, self.PAGE_SIZE)
            chunk = min(self.PAGE_SIZE - offset, length - pos)
            buf = self._pages.get(page)
            out += buf[offset : offset + chunk] if buf is not None else bytes(chunk)
            pos += chunk
        return bytes(out)

    def _zero(self, address: int, length: int) -> None:
        _check_range(address, length)
        if length == 0:
            return
        end = address + length
        first_page = address // self.PAGE_SIZE
        last_page = (end - 1) // self.PAGE_SIZE
        for page in [p for p in self._pages if first_page <= p <= last_page]:
            page_start = page * self.PAGE_SIZE
            lo = max(address, page_start) - page_start
            hi = min(end, page_start + self.PAGE_SIZE) - page_start
            if lo == 0 and hi == self.PAGE_SIZE:
                del self._pages[page]
            else:
                self._pages[page][lo:hi] = bytes(hi - lo)


_DEFAULT_MEMORY = PhysicalMemory()


def is_elf64(data: bytes) -> bool:
    """Return True if ``data`` starts with an ELF identification of class 64."""
    return len(data) > 4 and bytes(data[:4]) == _ELF_MAGIC and data[4] == _ELFCLASS64


def load_kernel(
    hal: HalServices, kernel_data: bytes, memory: PhysicalMemory | None = None
) -> KernelInfo:
    """Recognise the kernel image format and load it into ``memory``."""
    memory = _DEFAULT_MEMORY if memory is None else memory
    data = bytes(kernel_data)
    log = get_logger()
    log.log(LevelFilter.INFO, _TARGET, f"[KernelFormats] Loading kernel image ({len(data)} bytes)...")
    if is_elf64(data):
        log.log(LevelFilter.INFO, _TARGET, "[KernelFormats] Detected ELF64 format.")
        return _load_elf64_kernel(data, memory)
    log.log(LevelFilter.ERROR, _TARGET, "[KernelFormats] Unknown or unsupported kernel image format.")
    raise LoadError(LoadError.Kind.UNSUPPORTED_FORMAT, "Kernel image format not recognized.")


def load_initrd(
    hal: HalServices, initrd_data: bytes, memory: PhysicalMemory | None = None
) -> LoadedImageInfo:
    """Copy the initrd blob into newly allocated, 16-byte aligned memory."""
    memory = _DEFAULT_MEMORY if memory is None else memory
    data = bytes(initrd_data)
    log = get_logger()
    log.log(LevelFilter.INFO, _TARGET, f"[KernelFormats] Loading initrd image ({len(data)} bytes)...")
    address = memory.allocate(len(data), 16)
    if address is None:
        log.log(LevelFilter.ERROR, _TARGET, "[KernelFormats] Failed to allocate memory for initrd.")
        raise LoadError(
            LoadError.Kind.MEMORY_ALLOCATION_FAILED, "Initrd memory allocation failed"
        )
    memory.write(address, data)
    log.log(
        LevelFilter.INFO,
        _TARGET,
        f"[KernelFormats] Initrd loaded at physical address {address:#x}, size {len(data)} bytes.",
    )
    return LoadedImageInfo(load_address=address, size=len(data))


def _flags_text(flags: int) -> str:
    return "".join(
        letter if flags & bit else "-"
        for letter, bit in (("R", _PF_R), ("W", _PF_W), ("X", _PF_X))
    )


def _invalid(detail: str) -> LoadError:
    return LoadError(LoadError.Kind.INVALID_FORMAT, detail)


def _load_elf64_kernel(elf: bytes, memory: PhysicalMemory) -> KernelInfo:
    log = get_logger()
    if len(elf) < _EHDR_SIZE:
        raise _invalid("ELF parsing error: file is shorter than the ELF header")
    if elf[4] != _ELFCLASS64:
        raise _invalid("Not a 64-bit ELF file.")
    encoding = elf[5]
    if encoding == _ELFDATA2LSB:
        order = "<"
    elif encoding == _ELFDATA2MSB:
        order = ">"
    else:
        raise _invalid(f"ELF parsing error: unknown data encoding {encoding}")

    (
        e_type, _machine, _version, entry_point, phoff, _shoff, _flags,
        _ehsize, phentsize, phnum, _shentsize, _shnum, _shstrndx,
    ) = struct.unpack_from(order + _EHDR_TAIL, elf, 16)

    if e_type != _ET_EXEC:
        log.log(
            LevelFilter.WARN,
            _TARGET,
            "[ELF64] ELF is not EXEC type, might be DYN (relocatable). Proceeding with caution.",
        )
    if phnum and (phentsize < _PHDR_SIZE or phoff + phnum * phentsize > len(elf)):
        raise _invalid("ELF parsing error: program header table out of bounds")

    log.log(LevelFilter.DEBUG, _TARGET, f"[ELF64] Kernel entry point from header: {entry_point:#x}")

    phdr = struct.Struct(order + _PHDR)
    low: int | None = None
    high = 0
    for index in range(phnum):
        p_type, p_flags, offset, vaddr, _paddr, file_size, mem_size, _align = phdr.unpack_from(
            elf, phoff + index * phentsize
        )
        if p_type != _PT_LOAD or mem_size == 0:
            continue
        log.log(
            LevelFilter.INFO,
            _TARGET,
            f"[ELF64] LOAD Segment: VAddr={vaddr:#010x}, FileSize={file_size:#x}, "
            f"MemSize={mem_size:#x}, Offset={offset:#x}, Flags={_flags_text(p_flags)}",
        )
        if vaddr + mem_size > _U64_MAX + 1:
            raise LoadError(
                LoadError.Kind.SEGMENT_LOAD_FAILED, "Segment extends past the address space"
            )
        if file_size > mem_size:
            raise LoadError(
                LoadError.Kind.SEGMENT_LOAD_FAILED, "Segment file size exceeds its memory size"
            )
        if file_size > 0:
            if offset + file_size > len(elf):
                raise LoadError(
                    LoadError.Kind.SEGMENT_LOAD_FAILED, "Segment data out of bounds in ELF file"
                )
            memory.write(vaddr, elf[offset : offset + file_size])
        memory._zero(vaddr + file_size, mem_size - file_size)

        low = vaddr if low is None else min(low, vaddr)
        high = max(high, vaddr + mem_size)

    if low is None:
        raise _invalid("ELF file has no loadable segments.")

    total = high - low
    log.log(
        LevelFilter.INFO,
        _TARGET,
        f"[ELF64] Kernel loaded: Base={low:#x}, TotalSize={total:#x} "
        f"({total / (1024.0 * 1024.0):.2f} MiB)",
    )
    return KernelInfo(entry_point=entry_point, load_address=low, size=total, stack_ptr=None)