"""Bootloader core engine: logging, hardware model, device probing and kernel image loading."""

__version__ = "0.1.0"