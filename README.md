# lblcore

The core engine of a universal bootloader, as a Python library. It covers:

- **Logging** (`lblcore.logger`): a process-wide logger with a level filter that can be changed at run time and a pluggable writer.
- **Hardware abstraction** (`lblcore.hal`): the boot information record handed over by the first stage, and the HAL services built from it.
- **Devices** (`lblcore.device_manager`, `lblcore.async_probe`): a registry of discovered devices and probe tasks with progress reporting.
- **Kernel images** (`lblcore.kernel_formats`): ELF64 kernel and raw initrd loading into a simulated physical memory.

The package has no dependencies outside the standard library.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Usage

### Logging

```python
from lblcore.logger import LevelFilter, LogWriter, init_global_logger, set_log_level, get_log_level, set_global_writer, get_logger

class Collect(LogWriter):
    def __init__(self):
        self.lines = []
    def write(self, text):
        self.lines.append(text)

sink = Collect()
set_global_writer(sink)
init_global_logger(LevelFilter.INFO)
set_log_level(LevelFilter.DEBUG)
assert get_log_level() is LevelFilter.DEBUG

get_logger().log(LevelFilter.WARN, "example", "disk is slow")
# sink.lines[-1] == "[LBL WARN ] example: disk is slow\n"
```

`LevelFilter` runs from `OFF` through `ERROR`, `WARN`, `INFO`, `DEBUG` to `TRACE`; the default is `INFO`. `LblLogger.log` returns whether the record passed the filter. Calling `init_global_logger` a second time applies the new level but raises `SetLoggerError`. Once installed, `set_log_level` logs the change at `INFO`. The base `LogWriter` discards everything; `set_global_writer(None)` restores it.

### Hardware abstraction

```python
from lblcore.hal import BootInfo, HalError, LBL_BOOT_INFO_MAGIC, initialize, start_async_device_probes

record = BootInfo(
    magic=LBL_BOOT_INFO_MAGIC, version=1,
    memory_map_addr=0, memory_map_entries=0,
    framebuffer_addr=0, framebuffer_width=1024, framebuffer_height=768,
    framebuffer_pitch=4096, framebuffer_bpp=32,
)
hal = initialize(record.to_bytes())
```

`BootInfo.to_bytes` and `BootInfo.from_bytes` use the little-endian C layout of the record (`BootInfo.SIZE` bytes). `initialize` raises `HalError` with `kind` set to `HalError.Kind.NULL_BOOT_INFO` for empty input, `OTHER` for a record that is too short, and `INVALID_BOOT_INFO_MAGIC` when the magic does not match. The resulting `HalServices` holds the `boot_info` and a fresh `device_manager`.

### Devices and probing

```python
from lblcore.device_manager import Device, DeviceType

stored = hal.device_manager.add_device(Device(0, "SATA disk", DeviceType.STORAGE))
# an id of 0 is replaced by the next free id; negative ids raise ValueError
hal.device_manager.get_devices_by_type(DeviceType.STORAGE)

handle = start_async_device_probes(hal)
handle.poll_progress()          # runs all pending probe tasks, returns True when done
handle.progress_percentage()    # 100.0
handle.is_complete()
```

`DeviceManager.iter_devices` yields devices in ascending id order, and `add_device_callback` returns a callable that adds reported devices to that manager. `start_probes(callback)` in `lblcore.async_probe` creates four tasks (storage, network, GPU, input); a task that raises `ProbeError` is recorded in `ProbeHandle.errors` and still counts as finished.

### Loading a kernel and an initrd

```python
from lblcore.kernel_formats import LoadError, PhysicalMemory, is_elf64, load_kernel, load_initrd

memory = PhysicalMemory(0x0200_0000)
info = load_kernel(hal, kernel_bytes, memory)
initrd = load_initrd(hal, initrd_bytes, memory)
print(hex(info.entry_point), hex(info.load_address), info.size)
print(hex(initrd.load_address), initrd.size)
memory.read(info.load_address, 16)
```

Only ELF64 kernels (either byte order) are recognised; each `PT_LOAD` segment is written to its virtual address and the rest of its memory size is zeroed. Anything else raises `LoadError` with `kind` `UNSUPPORTED_FORMAT`; malformed ELF files raise `INVALID_FORMAT` or `SEGMENT_LOAD_FAILED`. Initrds are copied to a fresh 16-byte aligned allocation. `PhysicalMemory` is sparse: unwritten memory reads as zero, and `allocate` is a bump allocator starting at the given address. Without a `memory` argument both loaders share one module-wide `PhysicalMemory`.

## What this package does not do

- It does not read boot configuration files; there is no JSON configuration parsing or validation.
- It has no filesystem drivers and cannot mount volumes or read files from storage devices.
- The probe tasks only log that they ran; they do not find real hardware, so devices must be added to the `DeviceManager` by the caller.
- It never hands control to a loaded kernel; loading ends with the `KernelInfo` describing where the image lies in the simulated memory.
- There is no command-line program.