import struct

import pytest

from lblcore.hal import BootInfo, initialize
from lblcore.kernel_formats import (
    DEFAULT_ALLOC_BASE,
    KernelInfo,
    LoadError,
    PhysicalMemory,
    is_elf64,
    load_initrd,
    load_kernel,
)


@pytest.fixture
def hal():
    info = BootInfo(
        magic=BootInfo.MAGIC,
        version=1,
        memory_map_addr=0,
        memory_map_entries=0,
        framebuffer_addr=0,
        framebuffer_width=0,
        framebuffer_height=0,
        framebuffer_pitch=0,
        framebuffer_bpp=0,
    )
    return initialize(info.to_bytes())


def _elf64(segments, entry, e_type=2, order="<", extra_phdrs=()):
    """Build an ELF64 image. segments: (p_type, vaddr, payload, memsz)."""
    all_segments = list(segments) + list(extra_phdrs)
    phoff = 64
    data_off = phoff + 56 * len(all_segments)
    ident = b"\x7fELF" + bytes([2, 1 if order == "<" else 2, 1]) + bytes(9)
    header = ident + struct.pack(
        order + "HHIQQQIHHHHHH",
        e_type, 62, 1, entry, phoff, 0, 0, 64, 56, len(all_segments), 64, 0, 0,
    )
    phdrs = b""
    payloads = b""
    for p_type, vaddr, payload, memsz in all_segments:
        offset = data_off + len(payloads)
        phdrs += struct.pack(
            order + "IIQQQQQQ", p_type, 5, offset, vaddr, vaddr, len(payload), memsz, 0x1000
        )
        payloads += payload
    return header + phdrs + payloads


def test_is_elf64_recognises_magic_and_class():
    assert is_elf64(b"\x7fELF\x02\x01\x01")
    assert not is_elf64(b"\x7fELF\x01\x01\x01")
    assert not is_elf64(b"MZ\x90\x00\x02")
    assert not is_elf64(b"\x7fELF")


def test_unknown_format_is_unsupported(hal):
    with pytest.raises(LoadError) as info:
        load_kernel(hal, b"MZ" + bytes(100), PhysicalMemory())
    assert info.value.kind is LoadError.Kind.UNSUPPORTED_FORMAT


def test_single_segment_loaded_with_bss_zeroed(hal):
    memory = PhysicalMemory()
    memory.write(0x100000, b"\xff" * 64)
    payload = b"kernel-code"
    image = _elf64([(1, 0x100000, payload, 64)], entry=0x100004)
    info = load_kernel(hal, image, memory)
    assert info == KernelInfo(entry_point=0x100004, load_address=0x100000, size=64)
    assert info.stack_ptr is None
    assert memory.read(0x100000, len(payload)) == payload
    assert memory.read(0x100000 + len(payload), 64 - len(payload)) == bytes(64 - len(payload))


def test_span_covers_all_load_segments(hal):
    memory = PhysicalMemory()
    image = _elf64(
        [(1, 0x200000, b"abcd", 0x10), (1, 0x100000, b"wxyz", 0x20)], entry=0x100000
    )
    info = load_kernel(hal, image, memory)
    assert info.load_address == 0x100000
    assert info.size == (0x200000 + 0x10) - 0x100000
    assert memory.read(0x200000, 4) == b"abcd"
    assert memory.read(0x100000, 4) == b"wxyz"


def test_non_load_and_empty_segments_are_skipped(hal):
    memory = PhysicalMemory()
    image = _elf64(
        [(1, 0x100000, b"code", 8)],
        entry=0x100000,
        extra_phdrs=[(4, 0x900000, b"note", 4), (1, 0x800000, b"", 0)],
    )
    info = load_kernel(hal, image, memory)
    assert info.load_address == 0x100000
    assert info.size == 8
    assert memory.read(0x900000, 4) == bytes(4)


def test_no_loadable_segments_is_invalid(hal):
    image = _elf64([(4, 0x100000, b"note", 4)], entry=0)
    with pytest.raises(LoadError) as info:
        load_kernel(hal, image, PhysicalMemory())
    assert info.value.kind is LoadError.Kind.INVALID_FORMAT


def test_truncated_header_is_invalid(hal):
    with pytest.raises(LoadError) as info:
        load_kernel(hal, b"\x7fELF\x02\x01\x01" + bytes(20), PhysicalMemory())
    assert info.value.kind is LoadError.Kind.INVALID_FORMAT


def test_segment_data_out_of_bounds(hal):
    image = _elf64([(1, 0x100000, b"payload", 16)], entry=0x100000)
    with pytest.raises(LoadError) as info:
        load_kernel(hal, image[:-3], PhysicalMemory())
    assert info.value.kind is LoadError.Kind.SEGMENT_LOAD_FAILED


def test_relocatable_image_still_loads(hal):
    memory = PhysicalMemory()
    image = _elf64([(1, 0x400000, b"dyn", 3)], entry=0x400000, e_type=3)
    info = load_kernel(hal, image, memory)
    assert info.entry_point == 0x400000
    assert memory.read(0x400000, 3) == b"dyn"


def test_big_endian_image(hal):
    memory = PhysicalMemory()
    image = _elf64([(1, 0x300000, b"be-data", 12)], entry=0x300000, order=">")
    info = load_kernel(hal, image, memory)
    assert info.load_address == 0x300000
    assert info.size == 12
    assert memory.read(0x300000, 7) == b"be-data"


def test_initrd_first_allocation_at_default_base(hal):
    memory = PhysicalMemory()
    blob = b"initramfs contents"
    info = load_initrd(hal, blob, memory)
    assert info.load_address == DEFAULT_ALLOC_BASE
    assert info.size == len(blob)
    assert memory.read(info.load_address, info.size) == blob


def test_initrd_allocations_are_aligned_and_disjoint(hal):
    memory = PhysicalMemory(0x1001)
    first = load_initrd(hal, b"a" * 5, memory)
    second = load_initrd(hal, b"b" * 7, memory)
    for info in (first, second):
        assert info.load_address % 16 == 0
    assert first.load_address >= 0x1001
    assert second.load_address >= first.load_address + first.size
    assert memory.read(first.load_address, 5) == b"a" * 5
    assert memory.read(second.load_address, 7) == b"b" * 7


def test_initrd_allocation_failure(hal):
    memory = PhysicalMemory(2**64 - 8)
    with pytest.raises(LoadError) as info:
        load_initrd(hal, bytes(64), memory)
    assert info.value.kind is LoadError.Kind.MEMORY_ALLOCATION_FAILED


def test_allocate_rejects_bad_alignment():
    memory = PhysicalMemory()
    with pytest.raises(ValueError):
        memory.allocate(16, 3)
    with pytest.raises(ValueError):
        memory.allocate(16, 0)


def test_allocate_overflow_returns_none_and_keeps_cursor():
    memory = PhysicalMemory(2**64 - 32)
    assert memory.allocate(64, 16) is None
    assert memory.next_alloc_addr == 2**64 - 32


def test_memory_round_trip_across_pages():
    memory = PhysicalMemory()
    data = bytes(range(256)) * 40
    address = PhysicalMemory.PAGE_SIZE - 100
    memory.write(address, data)
    assert memory.read(address, len(data)) == data
    assert memory.read(0, 16) == bytes(16)


def test_memory_rejects_out_of_range_access():
    memory = PhysicalMemory()
    with pytest.raises(ValueError):
        memory.write(2**64 - 2, b"abcd")
    with pytest.raises(ValueError):
        memory.read(-1, 4)