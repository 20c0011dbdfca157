[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lblcore"
version = "0.1.0"
description = "Core engine of a universal bootloader: logging, hardware model, device probing and ELF64 kernel and initrd loading."
requires-python = ">=3.10"
dependencies = []
keywords = ["bootloader", "boot", "elf", "initrd", "hal", "devices"]
classifiers = [
    "Development Status :: 2 - Pre-Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Boot",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["lblcore"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
strict = true
